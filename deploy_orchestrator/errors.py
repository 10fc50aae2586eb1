class DeploymentError(RuntimeError):
    """Base class for failures that stop a deployment run"""


class ConfigError(DeploymentError):
    """Plan input or a required artifact is malformed or missing. Never retried."""


class PrepError(DeploymentError):
    """Preparing the host for a new deployment failed"""


class RuntimeNotFoundError(PrepError):
    """The container runtime is not installed or not reachable"""


class StartError(DeploymentError):
    """The container runtime failed to start the stack"""


class BuildError(StartError):
    """The build tool failed to produce an artifact"""


class ImageBuildError(StartError):
    """The container runtime failed to build images"""
