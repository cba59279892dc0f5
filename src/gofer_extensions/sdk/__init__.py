from gofer_extensions.sdk.pipeline import (
    DependencyNotFoundError,
    DuplicateTaskError,
    InvalidArgumentError,
    Pipeline,
    PipelineConfigError,
    RegistryAuth,
    RequiredParentStatus,
    Task,
    TaskCycleError,
    pipeline_object,
    pipeline_secret,
    run_object,
)

__all__ = [
    "DependencyNotFoundError",
    "DuplicateTaskError",
    "InvalidArgumentError",
    "Pipeline",
    "PipelineConfigError",
    "RegistryAuth",
    "RequiredParentStatus",
    "Task",
    "TaskCycleError",
    "pipeline_object",
    "pipeline_secret",
    "run_object",
]
