"""
Keyword-based meeting scene detection.

Pure functions: no I/O, never raises for any input string.
"""
from typing import Dict, List

from ..models import DetectionResult

# Scene -> trigger keywords, in declaration order. The order matters twice:
# ties between scenes go to the scene declared first, and the keywords
# reported for a scene follow this order, not their order in the text.
SCENE_KEYWORDS: Dict[str, List[str]] = {
    # Product
    "product/weekly": ["产品周会", "上周", "本周", "需求", "排期", "上线", "迭代", "sprint", "feature", "roadmap"],
    "product/review": ["需求评审", "PRD", "评审", "Story", "用户故事", "验收标准", "优先级"],
    "product/launch": ["产品发布", "发布会", "新功能", "亮点", "演示", "release", "launch"],

    # Marketing
    "marketing/weekly": ["营销周会", "投放", "转化", "曝光", "活动", "GMV", "业绩"],
    "marketing/campaign": ["策划", "方案", "创意", "目标人群", "营销活动", "campaign"],
    "marketing/brand": ["品牌", "定位", "差异化", "价值观", "品牌策略", "brand"],
    "marketing/partnership": ["合作", "洽谈", "伙伴", "渠道", "partnership"],

    # Sales
    "sales/meeting": ["销售会议", "业绩", "目标", "客户", "签约", "跟进"],
    "sales/negotiation": ["谈判", "报价", "合同", "让步", "签约", "价格"],
    "sales/channel": ["渠道", "经销商", "代理", "分销", "channel"],

    # Strategy & management
    "strategy/meeting": ["战略", "三年规划", "愿景", "竞争", "格局", "strategy"],
    "strategy/management": ["管理层", "例会", "经营", "CEO", "总裁", "高管"],
    "strategy/review": ["复盘", "总结", "经验", "教训", "回顾", "review"],

    # HR
    "hr/interview": ["面试", "自我介绍", "项目经历", "离职原因", "优势", "面试官"],
    "hr/performance": ["绩效", "考核", "KPI", "面谈", "评分"],
    "hr/exit": ["离职", "辞职", "退出", "面谈", "交接"],
    "hr/team": ["团建", "团队建设", "活动", "聚餐", "team building"],

    # R&D
    "rd/tech-review": ["技术评审", "架构", "技术方案", "可行性", "风险", "review"],
    "rd/planning": ["排期", "计划", "工期", "里程碑", "排期会"],
    "rd/incident": ["故障", "问题", "incident", "bug", "紧急", "P0", "P1"],

    # Other
    "other/finance": ["财务", "预算", "成本", "利润", "营收", "finance"],
    "other/legal": ["法务", "合规", "合同", "法律", "legal", "compliance"],
}

CATEGORY_LABELS: Dict[str, str] = {
    "product": "Product",
    "marketing": "Marketing",
    "sales": "Sales",
    "strategy": "Strategy & Management",
    "hr": "HR",
    "rd": "R&D",
    "other": "Other",
}

FALLBACK_SCENE = "product/weekly"
FALLBACK_KEYWORDS = ["会议"]
MIN_CONFIDENCE = 0.3
FULL_CONFIDENCE_HITS = 3
MAX_KEYWORDS = 5


def detect(content: str) -> DetectionResult:
    """
    Classify a dialogue transcript into a scene.

    Each scene scores one point per declared keyword found anywhere in the
    text (case-sensitive substring, repeats count once). The highest score
    wins, the first declared scene wins ties. Confidence is
    ``min(score / 3, 1)``; below 0.3 the fallback scene is returned with the
    computed confidence.
    """
    scores: Dict[str, int] = {}
    found: Dict[str, List[str]] = {}

    for scene, keywords in SCENE_KEYWORDS.items():
        matched = [keyword for keyword in keywords if keyword in content]
        scores[scene] = len(matched)
        found[scene] = matched

    max_score = 0
    best_scene = FALLBACK_SCENE
    best_keywords: List[str] = []
    for scene, score in scores.items():
        if score > max_score:
            max_score = score
            best_scene = scene
            best_keywords = found[scene]

    confidence = min(max_score / FULL_CONFIDENCE_HITS, 1.0)

    if confidence < MIN_CONFIDENCE:
        best_scene = FALLBACK_SCENE
        best_keywords = list(FALLBACK_KEYWORDS)

    return DetectionResult(
        scene=best_scene,
        confidence=confidence,
        keywords=best_keywords[:MAX_KEYWORDS],
        all_scores=scores,
    )


def get_all_scenes() -> List[str]:
    return list(SCENE_KEYWORDS.keys())


def get_scene_categories() -> Dict[str, List[str]]:
    """Scenes grouped by their category prefix, in declaration order."""
    categories: Dict[str, List[str]] = {}
    for scene in SCENE_KEYWORDS:
        category = scene.split("/", 1)[0]
        categories.setdefault(category, []).append(scene)
    return categories


def is_known_scene(scene: str) -> bool:
    return scene in SCENE_KEYWORDS
