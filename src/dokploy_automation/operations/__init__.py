from .base import Operation
from .container import DockerServiceOperation
from .exec import ExecOperation
from .file import FileOperation
from .firewall import UfwPolicyOperation, UfwRuleOperation
from .http_check import HttpCheckOperation
from .package import PackageOperation
from .service import ServiceOperation

OPERATION_REGISTRY = {
    "package": PackageOperation,
    "exec": ExecOperation,
    "file": FileOperation,
    "service": ServiceOperation,
    "ufw_rule": UfwRuleOperation,
    "ufw_policy": UfwPolicyOperation,
    "docker_service": DockerServiceOperation,
    "http_check": HttpCheckOperation,
}

__all__ = [
    "Operation",
    "PackageOperation",
    "ExecOperation",
    "FileOperation",
    "ServiceOperation",
    "UfwRuleOperation",
    "UfwPolicyOperation",
    "DockerServiceOperation",
    "HttpCheckOperation",
    "OPERATION_REGISTRY",
]
