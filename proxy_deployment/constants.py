from pathlib import Path

import proxy_deployment

#
# Filesystem
#

DEPLOYMENT_DIR = Path(proxy_deployment.__file__).parent.parent / "deployment"
ARTIFACTS_DIR = DEPLOYMENT_DIR / "artifacts"

REGISTRY_FILE_SUFFIX = ".json"
LOCK_FILE_SUFFIX = ".lock"

#
# Contracts
#

OZ_DEPENDENCY_NAME = "openzeppelin"
OZ_DEPENDENCY_VERSION = "5.0.0"
PROXY_CONTRACT_TYPE = "TransparentUpgradeableProxy"

DEFAULT_INITIALIZER = "initialize"

ZERO_ADDRESS = "0x" + "00" * 20

# EIP1967 slots - https://eips.ethereum.org/EIPS/eip-1967
EIP1967_IMPLEMENTATION_SLOT = 0x360894A13BA1A3210667C828492DB98DCA3E2076CC3735A920A3CA505D382BBC
EIP1967_ADMIN_SLOT = 0xB53127684A568B3173AE13B9F8A6016E243E63B6E8EE1178D6A717850B5D6103

#
# Settings
#

MAX_BASIS_POINTS = 10_000

PROTOCOL_FEE_CONSTANT = "PROTOCOL_FEE"
EIP712_NAME_CONSTANT = "EIP712_NAME"
EIP712_VERSION_CONSTANT = "EIP712_VERSION"

#
# Execution
#

DEFAULT_CONFIRMATION_TIMEOUT = 300  # seconds

IMPLEMENTATION_STAGE = "implementation"
PROXY_STAGE = "proxy"
