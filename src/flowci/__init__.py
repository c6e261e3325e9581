from .dsl import job, sh, matrix, workflow, wf, pipeline, JobBuilder, build
from .conditions import ref_startswith, ref_matches, event_is
from .controller import run_pipeline, plan_pipeline
from .loader import load_workflow, load_yaml
from .model import Job, Step, Pipeline, JobState, Reason
from .trigger import Event
from .secrets import SecretStore

__all__ = [
    "job", "sh", "matrix", "workflow", "wf", "pipeline", "JobBuilder", "build",
    "ref_startswith", "ref_matches", "event_is",
    "run_pipeline", "plan_pipeline", "load_workflow", "load_yaml",
    "Job", "Step", "Pipeline", "JobState", "Reason", "Event", "SecretStore",
]
