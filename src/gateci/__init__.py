from .dsl import job, sh, setup, container, matrix, wf, workflow, JobBuilder, build
from .errors import CIError, ConfigError, InfrastructureError, ProvisionError, StepFailure, StepTimeout
from .executor import Executor
from .loader import load_graph
from .model import Container, Graph, Host, Job, JobState, Run, Setup, Step, Verdict
from .provision import Provisioner
from .report import aggregate, build_report
from .trigger import TriggerService

__all__ = [
    "job", "sh", "setup", "container", "matrix", "wf", "workflow", "JobBuilder", "build",
    "CIError", "ConfigError", "InfrastructureError", "ProvisionError", "StepFailure", "StepTimeout",
    "Executor", "load_graph",
    "Container", "Graph", "Host", "Job", "JobState", "Run", "Setup", "Step", "Verdict",
    "Provisioner", "aggregate", "build_report", "TriggerService",
]
