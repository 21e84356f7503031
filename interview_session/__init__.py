from __future__ import annotations  # Re-export interview_session public API

from .engine import ANSWERABLE_PHASES, InterviewEngine, MachineState, Phase, TurnResult, progress

__all__ = ["ANSWERABLE_PHASES", "InterviewEngine", "MachineState", "Phase", "TurnResult", "progress"]
