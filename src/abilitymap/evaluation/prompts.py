"""Prompt templating for the evaluation service.

Three prompt pairs are rendered with Jinja2:

- Max-score prediction: asks for the theoretical ceiling (1-4) an ideal
  contributor could reach on the item for each criterion, judged from the
  item's description only.
- Judgment: asks for the level (-1..4) the subject actually reached, with the
  predicted ceilings included when available.
- Summary: asks for a short explanation of one ability score from the
  judgments it was estimated from.

All ask for a fenced JSON block so ``abilitymap.evaluation.parsing`` can
extract the payload.
"""

from collections.abc import Mapping, Sequence
from typing import Any

import jinja2

from abilitymap.core import constants
from abilitymap.core.models import AbilityScore, ItemEvaluation, WorkItem

_ITEM_LABELS = {
    "pull_request": "Pull Request",
    "issue": "Issue",
    "thread": "Thread",
}

_CRITERIA_BLOCK = """\
# Criteria
{% for criterion in criteria %}
- {{ criterion }}
{%- endfor %}

# Levels
{% for level, name in level_names %}
- {{ level }}: {{ name }}
{%- endfor %}
"""

PREDICTION_SYSTEM_TEMPLATE = """\
You are an experienced engineering manager. Do not judge the work that was
actually done. Instead, for each criterion, predict the highest level an ideal
contributor could have reached on this item, judging only from its description,
purpose and context.

""" + _CRITERIA_BLOCK + """
Score the ceiling from 1 (routine, self-contained) to 4 (organization-wide,
novel, expert-level), weighing complexity, importance, required skills and
scope of impact.

Respond with a JSON block:

```json
{"predictions": [{"criteria": "<criterion>", "predictedMaxScore": 1, "reasoning": "..."}]}
```
"""

PREDICTION_USER_TEMPLATE = """\
## {{ item_label }} #{{ item.number }}: {{ item.title }}

{{ body if body else "(no description)" }}

Predict the ceiling for every criterion and include the predictions array.
"""

JUDGMENT_SYSTEM_TEMPLATE = """\
You are a strict and fair engineering manager. Evaluate the contribution of one
person to the item below against each criterion.

""" + _CRITERIA_BLOCK + """
If the item shows no evidence at all for a criterion, set "evaluable" to false
for that criterion.

Respond with a JSON block:

```json
{"evaluations": [{"criteria": "<criterion>", "level": 1, "levelName": "Standard",
  "evidence": ["..."], "reasoning": "...", "evaluable": true}]}
```
"""

JUDGMENT_USER_TEMPLATE = """\
Person under evaluation: {{ item.subject }}
Repository: {{ item.repository }}

## {{ item_label }} #{{ item.number }}: {{ item.title }}

{{ body if body else "(no description)" }}

{% if item.comments -%}
Comments ({{ item.comments | length }}):
{% for comment in item.comments -%}
{{ loop.index }}. {{ comment.author }}: {{ comment.body }}
{% endfor %}
{%- else -%}
Comments: none
{%- endif %}
{% if predictions %}
# Ceilings

The theoretical maximum level for each criterion on this item:
{% for criterion, max_score in predictions.items() %}
- {{ criterion }}: {{ max_score }}
{%- endfor %}

Use these ceilings to calibrate the level you assign.
{% endif %}
Include the evaluations array in your answer.
"""


SUMMARY_SYSTEM_TEMPLATE = """\
You are an analysis assistant. For one criterion you receive a person's
estimated ability and the individual judgments it was estimated from.
Summarize in two or three sentences why the ability is where it is.

- Mention surprise or incident flags when any judgment carries one.
- Cite at most three representative items (e.g. pull_request#123, issue#45).
- If the ability is {{ low_level }} or lower, suggest concrete next steps.

Respond with a JSON block:

```json
{"criteria_name": "<criterion>", "evaluation_level": 1.5, "summary": "..."}
```
"""

SUMMARY_USER_TEMPLATE = """\
# Ability analysis: {{ criterion }}

Person: {{ subject }}
Repository: {{ repository if repository else "all repositories" }}

Estimated ability: {{ "%.2f" | format(score.ability) }} (scale 0-4)
95% interval: {{ "%.2f" | format(score.confidence_interval.lower) }} - \
{{ "%.2f" | format(score.confidence_interval.upper) }}
Judgments used: {{ score.evaluation_count }}

## Judgments
{% for e in evaluations %}
{{ loop.index }}. {{ e.item_type }}#{{ e.item_number }} ({{ e.repository }}): \
level {{ e.level }}/{{ e.item_max }}
   - reasoning: {{ e.reasoning or "none" }}
   - evidence: {{ e.evidence | join("; ") if e.evidence else "none" }}
{%- if e.surprise_flag %}
   - surprise: scored above the predicted ceiling
{%- endif %}
{%- if e.incident_flag %}
   - incident: judged as a negative contribution
{%- endif %}
{% endfor %}
"""


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "\n[... truncated ...]"


class PromptBuilder:
    """Renders prediction and judgment prompts for work items."""

    def __init__(
        self,
        criteria: Sequence[str],
        jinja_env: jinja2.Environment | None = None,
    ) -> None:
        """Initialize prompt builder.

        Args:
            criteria: Criterion names, in the order they should be listed.
            jinja_env: Optional custom Jinja2 environment.
        """
        self.criteria = list(criteria)
        self.env = jinja_env or jinja2.Environment(
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def _render(self, template: str, **context: Any) -> str:
        base = {
            "criteria": self.criteria,
            "level_names": sorted(constants.LEVEL_NAMES.items()),
        }
        return self.env.from_string(template).render(**base, **context)

    def prediction_system_prompt(self) -> str:
        return self._render(PREDICTION_SYSTEM_TEMPLATE)

    def judgment_system_prompt(self) -> str:
        return self._render(JUDGMENT_SYSTEM_TEMPLATE)

    def build_prediction_prompt(self, item: WorkItem) -> str:
        """User prompt asking for the item's per-criterion ceilings."""
        return self._render(
            PREDICTION_USER_TEMPLATE,
            item=item,
            item_label=_ITEM_LABELS.get(item.item_type, item.item_type),
            body=truncate(item.body, constants.MAX_PREDICTION_BODY_CHARS),
        )

    def build_judgment_prompt(
        self,
        item: WorkItem,
        predictions: Mapping[str, int] | None = None,
    ) -> str:
        """User prompt asking for the subject's level on each criterion.

        Args:
            item: The work item under evaluation.
            predictions: Predicted ceilings per criterion, if known.
        """
        return self._render(
            JUDGMENT_USER_TEMPLATE,
            item=item,
            item_label=_ITEM_LABELS.get(item.item_type, item.item_type),
            body=truncate(item.body, constants.MAX_BODY_CHARS),
            predictions=dict(predictions or {}),
        )

    def summary_system_prompt(self) -> str:
        return self._render(SUMMARY_SYSTEM_TEMPLATE, low_level=constants.SUMMARY_LOW_LEVEL)

    def build_summary_prompt(
        self,
        score: AbilityScore,
        evaluations: Sequence[ItemEvaluation],
        repository: str | None = None,
    ) -> str:
        """User prompt asking to explain one ability score.

        Only the most recent judgments are listed.
        """
        recent = list(evaluations)[-constants.MAX_SUMMARY_EVALUATIONS :]
        return self._render(
            SUMMARY_USER_TEMPLATE,
            subject=score.subject,
            criterion=score.criterion,
            repository=repository,
            score=score,
            evaluations=recent,
        )


__all__ = ["PromptBuilder", "truncate"]
