class InstallerError(RuntimeError):
    """A phase could not complete; the pipeline stops at the first one."""


class CommandError(InstallerError):
    pass
