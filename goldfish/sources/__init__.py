from .base import SourceAdapter, TaskCandidate, candidate_key
from .canvas import CanvasAdapter
from .classroom import ClassroomAdapter
from .ustep import UstepAdapter

__all__ = ["SourceAdapter", "TaskCandidate", "candidate_key", "CanvasAdapter", "ClassroomAdapter", "UstepAdapter", "build_adapters"]


def build_adapters(config_data: dict, canvas_client, classroom_client, ustep_client, logger=None):
    """Factory: one adapter per source, in sync order (Canvas, Classroom, USTeP)."""
    canvas_cfg = config_data.get("canvas") or {}
    return [
        CanvasAdapter(canvas_client, mode=canvas_cfg.get("mode") or "all", logger=logger),
        ClassroomAdapter(classroom_client, logger=logger),
        UstepAdapter(ustep_client, logger=logger),
    ]
