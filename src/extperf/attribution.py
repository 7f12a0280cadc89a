"""Subprocess attribution: walk, sample, match and aggregate."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from extperf.matcher import build_index, match
from extperf.models import Component, ComponentUsage, ProcessUsage
from extperf.process_tree import ProcessTreeWalker
from extperf.sampler import ResourceSampler

log = structlog.get_logger()


@dataclass(slots=True)
class _Accumulator:
    total_cpu: float = 0.0
    total_memory: float = 0.0
    processes: list[ProcessUsage] = field(default_factory=list)

    def add(self, usage: ProcessUsage) -> None:
        self.total_cpu += usage.cpu_percent
        self.total_memory += usage.memory_mb
        self.processes.append(usage)

    def freeze(self, component_id: str) -> ComponentUsage:
        ordered = sorted(self.processes, key=lambda p: p.cpu_percent, reverse=True)
        return ComponentUsage(
            component_id=component_id,
            total_cpu_percent=self.total_cpu,
            total_memory_mb=self.total_memory,
            process_count=len(ordered),
            processes=tuple(ordered),
        )


class AttributionEngine:
    """Turn a process tree into per-component usage totals, once per call."""

    def __init__(
        self,
        walker: ProcessTreeWalker | None = None,
        sampler: ResourceSampler | None = None,
    ) -> None:
        self._walker = walker or ProcessTreeWalker()
        self._sampler = sampler or ResourceSampler()

    @property
    def sampler(self) -> ResourceSampler:
        return self._sampler

    def attribute(
        self,
        components: Sequence[Component],
        root_pid: int,
        overrides: Mapping[int, str] | None = None,
    ) -> dict[str, ComponentUsage]:
        """
        Attribute the descendants of root_pid to components.

        Args:
            components: Components to attribute to, in host order.
            root_pid: Ancestor whose descendants are examined.
            overrides: Known pid -> component id ownership. Takes precedence
                over command-line matching.

        Returns:
            One ComponentUsage per component. Components owning no sampled
            process have zero totals.
        """
        accumulators = {component.id: _Accumulator() for component in components}
        overrides = overrides or {}

        samples = self._walker.walk(root_pid)
        if not samples:
            return self._freeze(accumulators)

        readings = self._sampler.sample(sample.pid for sample in samples)
        if not readings:
            log.debug("attribution_no_readings", processes=len(samples))
            return self._freeze(accumulators)

        index = build_index(components)
        for sample in samples:
            reading = readings.get(sample.pid)
            if reading is None:
                continue

            owner = overrides.get(sample.pid)
            if owner not in accumulators:
                owner = match(sample.command_line, index)
            if owner is None:
                continue

            accumulators[owner].add(
                ProcessUsage(
                    pid=sample.pid,
                    parent_pid=sample.parent_pid,
                    command_line=sample.command_line,
                    cpu_percent=reading.cpu_percent,
                    memory_mb=reading.memory_mb,
                )
            )

        return self._freeze(accumulators)

    @staticmethod
    def _freeze(accumulators: dict[str, _Accumulator]) -> dict[str, ComponentUsage]:
        return {cid: acc.freeze(cid) for cid, acc in accumulators.items()}
