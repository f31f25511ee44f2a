"""
Keyword heuristics that turn a prompt into routing criteria.
"""

from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field


class TaskType(str, Enum):
    PARSING = "parsing"
    PLANNING = "planning"
    ANALYSIS = "analysis"
    GENERATION = "generation"
    REVIEW = "review"


class ComplexityLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXPERT = "expert"


class LatencyLevel(str, Enum):
    REAL_TIME = "real_time"  # < 1s
    FAST = "fast"  # < 5s
    NORMAL = "normal"  # < 30s
    BATCH = "batch"


class CostLevel(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class QualityLevel(str, Enum):
    BASIC = "basic"
    GOOD = "good"
    HIGH = "high"
    PREMIUM = "premium"


class ModelCriteria(BaseModel):
    """Routing criteria derived for one request."""

    task_type: TaskType = TaskType.ANALYSIS
    complexity: ComplexityLevel = ComplexityLevel.MEDIUM
    latency_requirement: LatencyLevel = LatencyLevel.NORMAL
    cost_sensitivity: CostLevel = CostLevel.NORMAL
    quality: QualityLevel = QualityLevel.HIGH


class ProcessOptions(BaseModel):
    """Caller options for AIOrchestrator.process()."""

    task_type: Optional[TaskType] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    skip_cache: bool = False
    real_time: bool = False
    timeout: Optional[float] = Field(default=None, gt=0, description="Deadline in seconds for the model call")


# Checked in order; the first level with a matching indicator wins.
COMPLEXITY_INDICATORS: List[Tuple[ComplexityLevel, List[str]]] = [
    (ComplexityLevel.EXPERT, ["架构设计", "系统设计", "复杂算法", "深度分析", "architecture design", "system design"]),
    (ComplexityLevel.HIGH, ["详细分析", "多步骤", "综合评估", "detailed analysis", "multi-step"]),
    (ComplexityLevel.MEDIUM, ["分析", "规划", "总结", "summarize"]),
    (ComplexityLevel.LOW, ["简单", "基础", "列表", "simple", "basic"]),
]

TASK_TYPE_KEYWORDS: List[Tuple[TaskType, List[str]]] = [
    (TaskType.PARSING, ["解析", "提取", "识别", "parse", "extract"]),
    (TaskType.PLANNING, ["规划", "计划", "任务", "plan", "schedule"]),
    (TaskType.ANALYSIS, ["分析", "评估", "analyze", "evaluate"]),
    (TaskType.GENERATION, ["生成", "创建", "generate", "create"]),
    (TaskType.REVIEW, ["审查", "检查", "review", "check"]),
]


class TaskClassifier:
    """Classifies prompts by substring match against keyword tables."""

    def __init__(
        self,
        task_keywords: Optional[List[Tuple[TaskType, List[str]]]] = None,
        complexity_indicators: Optional[List[Tuple[ComplexityLevel, List[str]]]] = None,
    ):
        self.task_keywords = task_keywords or TASK_TYPE_KEYWORDS
        self.complexity_indicators = complexity_indicators or COMPLEXITY_INDICATORS

    def classify_task_type(self, prompt: str) -> TaskType:
        lowered = prompt.lower()
        for task_type, keywords in self.task_keywords:
            if any(keyword in lowered for keyword in keywords):
                return task_type
        return TaskType.ANALYSIS

    def classify_complexity(self, prompt: str) -> ComplexityLevel:
        lowered = prompt.lower()
        for level, indicators in self.complexity_indicators:
            if any(indicator in lowered for indicator in indicators):
                return level
        return ComplexityLevel.MEDIUM

    def analyze(self, prompt: str, options: Optional[ProcessOptions] = None) -> ModelCriteria:
        options = options or ProcessOptions()
        return ModelCriteria(
            task_type=options.task_type or self.classify_task_type(prompt),
            complexity=self.classify_complexity(prompt),
            latency_requirement=LatencyLevel.REAL_TIME if options.real_time else LatencyLevel.NORMAL,
            cost_sensitivity=CostLevel.NORMAL,
            quality=QualityLevel.HIGH,
        )
