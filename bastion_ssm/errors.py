class LauncherError(Exception):
    """Base error for every fatal condition; carries the process exit code."""
    exit_code = 1

    def __init__(self, message: str, exit_code: int = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class MissingTargetError(LauncherError):
    exit_code = 1


class MissingDependencyError(LauncherError):
    exit_code = 2


class UnsupportedPlatformError(LauncherError):
    exit_code = 3


class PluginInstallError(LauncherError):
    exit_code = 3


class InstanceNotFoundError(LauncherError):
    exit_code = 3


class AssumeRoleError(LauncherError):
    exit_code = 4
