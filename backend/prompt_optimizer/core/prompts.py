# Judge, optimizer and scaffold prompts

from typing import Iterable, Optional

EVALUATION_SYSTEM_PROMPT = "You are a professional evaluator. Return only JSON."

EVALUATION_PROMPT_TEMPLATE = """
You are a professional prompt evaluator. Compare the generated meeting summary
against the reference summary and score it on four dimensions.

## Generated Summary
{generated}

## Reference Summary
{reference}

## Evaluation Dimensions
1. Completeness (0-100): Did it extract all important information?
2. Detail (0-100): Are details fully expanded?
3. Thoroughness (0-100): Are there any missing key points?
4. Word Count Diff (0-100): Is the word count difference from the reference reasonable?

Grade the overall result: S (90+), A (80-89), B (70-79), C (60-69), D (below 60).

## Output Format
Output a single JSON object:
{{
  "completeness": number,
  "detail": number,
  "thoroughness": number,
  "word_count_diff": number,
  "total": number,
  "grade": "S|A|B|C|D",
  "strengths": ["strength1", "strength2"],
  "weaknesses": ["weakness1", "weakness2"],
  "suggestions": ["suggestion1", "suggestion2"]
}}
"""

OPTIMIZE_PROMPT_TEMPLATE = """
You are a prompt optimization expert. Based on the evaluation results below,
rewrite the prompt so the next summary scores higher.

## Current Prompt
{prompt}

## Evaluation Results
- Total Score: {total}
- Grade: {grade}
- Weaknesses: {weaknesses}
- Suggestions: {suggestions}

Output the optimized prompt in Markdown format directly, without commentary.
"""


def build_evaluation_prompt(generated: str, reference: str) -> str:
    """Builds the judge prompt embedding both summaries and the rubric."""
    return EVALUATION_PROMPT_TEMPLATE.format(generated=generated, reference=reference)


def _join(items: Optional[Iterable[str]]) -> str:
    return ", ".join(str(item) for item in (items or []))


def build_optimize_prompt(
    prompt: str,
    total=None,
    grade: Optional[str] = None,
    weaknesses: Optional[Iterable[str]] = None,
    suggestions: Optional[Iterable[str]] = None,
) -> str:
    """Builds the meta-prompt asking the model to rewrite ``prompt``."""
    return OPTIMIZE_PROMPT_TEMPLATE.format(
        prompt=prompt,
        total=total if total is not None else "n/a",
        grade=grade or "n/a",
        weaknesses=_join(weaknesses),
        suggestions=_join(suggestions),
    )


ENV_EXAMPLE = """# Prompt Optimizer - API keys
# Copy this file to .env and fill in your keys

# Aliyun DashScope (QWEN MAX)
DASHSCOPE_API_KEY=

# DeepSeek (DeepSeek V3)
DEEPSEEK_API_KEY=

# Volcengine Ark (Doubao)
DOUBAO_API_KEY=

# REST API
PORT=3001
HOST=0.0.0.0
"""

README_TEMPLATE = """# {project_name}

Prompt iteration workspace for meeting-summary generation.

## Setup

```bash
cp .env.example .env   # then fill in your API keys
```

## Usage

```bash
# Detect the meeting scene
po detect dialogue/meeting.txt

# Generate a summary
po generate -d dialogue/meeting.txt -p prompts/product/weekly/v1.md -s product/weekly

# Evaluate it against a reference summary
po evaluate -g outputs/product/weekly/summary.md -r reference.md

# Ask the model for an improved prompt
po optimize -p prompts/product/weekly/v1.md -e evaluations/eval.json --save --scene product/weekly

# Prompt versions
po version list product/weekly
po version save -p prompt.md -s product/weekly -m "tighten action items"

# Statistics and suggestions from the command history
po insight --trend
```

## Scenes

{scene_lines}

## Models

{model_lines}

## Notes

The REST API (`po serve`) tracks asynchronous tasks in memory only: every
task record is lost when the process restarts.
"""
