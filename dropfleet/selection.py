"""Template eligibility and ranking.

A request without a label only goes to templates that opt in to
label-less jobs; declaring no labels is not an opt-in.

Ranking is a sort key, a tuple of ordinal buckets compared in order:

1. templates whose every size is unhealthy go last;
2. a fixed list of preferred template names, best first;
3. names with the high-capacity prefix before other names;
4. templates that refuse label-less jobs before those that accept them
   (accepting anything makes a worse specific match);
5. name, for determinism only.

Because the key is total on distinct names, the result does not depend
on the order templates were declared in.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from loguru import logger

from dropfleet.constants import HIGH_CAPACITY_PREFIX, PREFERRED_TEMPLATES
from dropfleet.types import Label, TemplateConfig

log = logger.bind(component="selection")

type RankKey = tuple[int, int, int, int, str]


def is_eligible(template: TemplateConfig, label: Label | None) -> bool:
    if label is None:
        return template.labelless_jobs_allowed
    return label.matches(template.label_set)


@dataclass(frozen=True, slots=True)
class TemplateSelector:
    preferred: tuple[str, ...] = PREFERRED_TEMPLATES
    high_capacity_prefix: str = HIGH_CAPACITY_PREFIX

    def eligible(self, templates: Iterable[TemplateConfig], label: Label | None) -> list[TemplateConfig]:
        return [t for t in templates if is_eligible(t, label)]

    def rank_key(self, template: TemplateConfig) -> RankKey:
        try:
            preferred = self.preferred.index(template.name)
        except ValueError:
            preferred = len(self.preferred)
        return (
            int(template.is_erroring),
            preferred,
            0 if template.name.startswith(self.high_capacity_prefix) else 1,
            int(template.labelless_jobs_allowed),
            template.name,
        )

    def rank(self, templates: Iterable[TemplateConfig], label: Label | None) -> list[TemplateConfig]:
        ranked = sorted(self.eligible(templates, label), key=self.rank_key)
        log.debug(
            "Templates for {label}: {templates}",
            label=label.name if label is not None else "<none>",
            templates=[t.name for t in ranked],
        )
        return ranked

    @staticmethod
    def pick_first_under_cap(
        ranked: Sequence[TemplateConfig],
        under_cap: Callable[[TemplateConfig], bool],
    ) -> TemplateConfig | None:
        for template in ranked:
            if under_cap(template):
                return template
        return None
