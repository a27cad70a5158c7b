'''
Fatal error types raised by the validation pipeline.

Numerically degenerate results (zero variance, zero weight sum, too few
samples, target cells outside the source grid) are not errors: they are
returned as NaN and logged by the module that produced them.
'''


class InputUnavailable(Exception):
    '''
    A required input file or variable is missing or unreadable.
    '''

    def __init__(self, path=None, variable: str = None, reason: str = None):
        self.path = path
        self.variable = variable

        if variable is None:
            message = f'Required input file unavailable: {path}'
        else:
            message = f"Required variable '{variable}' unavailable in {path}"

        if reason:
            message += f' ({reason})'

        super().__init__(message)


class GridRepairError(ValueError):
    '''
    A coordinate array has gaps that cannot be filled from any neighbour.
    '''

    pass
