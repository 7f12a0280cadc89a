"""
Placeholder usage estimates for components with no matched process.

These numbers are guesses derived from extension metadata plus random
jitter. They are intentionally non-deterministic and carry no measurement;
they only keep a component visible when nothing could be attributed to it.
"""

import random

from extperf.models import Component


def estimate_cpu_usage(component: Component, rng: random.Random | None = None) -> float:
    """Guess a CPU percentage for a component."""
    rng = rng or random
    features = component.contributions
    estimate = 0.0

    if component.is_active:
        estimate += 0.5
    if "languages" in features or "wildcard_activation" in features:
        estimate += 1.5
    if "many_commands" in features:
        estimate += 0.8
    if "grammars" in features or "themes" in features:
        estimate += 0.3

    estimate += rng.random() * 2
    return min(estimate, 100.0)


def estimate_memory_usage(component: Component, rng: random.Random | None = None) -> float:
    """Guess a resident memory size in MB for a component."""
    rng = rng or random
    features = component.contributions
    estimate = 2.0  # Base

    if component.is_active:
        estimate += 5.0
        if "languages" in features:
            estimate += 15.0
        if "themes" in features or "icon_themes" in features:
            estimate += 8.0
        if "debuggers" in features:
            estimate += 12.0
        if "views" in features or "webview" in features:
            estimate += 20.0

    estimate += rng.random() * 5
    return float(round(estimate))
