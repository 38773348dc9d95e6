from webdeploy.models.application import Application  # noqa: F401
from webdeploy.models.deployment import Deployment, DeploymentStatus  # noqa: F401
from webdeploy.models.deployment_step import DeploymentStep, StepStatus  # noqa: F401
