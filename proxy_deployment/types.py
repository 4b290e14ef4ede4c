import click

from proxy_deployment.constants import MAX_BASIS_POINTS


class MinInt(click.ParamType):
    name = "minint"

    def __init__(self, min_value):
        self.min_value = min_value

    def convert(self, value, param, ctx):
        try:
            ivalue = int(value)
        except ValueError:
            self.fail(f"{value} is not a valid integer", param, ctx)
        if ivalue < self.min_value:
            self.fail(
                f"{value} is less than the minimum allowed value of {self.min_value}", param, ctx
            )
        return ivalue


class BasisPoints(MinInt):
    name = "basis_points"

    def __init__(self):
        super().__init__(min_value=0)

    def convert(self, value, param, ctx):
        ivalue = super().convert(value, param, ctx)
        if ivalue >= MAX_BASIS_POINTS:
            self.fail(f"{value} must be less than {MAX_BASIS_POINTS} basis points", param, ctx)
        return ivalue


class NonEmptyString(click.ParamType):
    name = "non_empty_string"

    def convert(self, value, param, ctx):
        if not str(value).strip():
            self.fail("Value must not be empty", param, ctx)
        return str(value)

