from prassist.generators.base import EventHook, Generator, GeneratorResponse
from prassist.generators.file_content import FileContentGenerator
from prassist.generators.patch import PatchGenerator
from prassist.generators.planner import PlanGenerator, PlanStep, parse_plan_json

__all__ = [
    "EventHook",
    "FileContentGenerator",
    "Generator",
    "GeneratorResponse",
    "PatchGenerator",
    "PlanGenerator",
    "PlanStep",
    "parse_plan_json",
]
