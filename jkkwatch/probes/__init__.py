"""Vacancy probes: the external search performed by every check cycle."""

from jkkwatch.probes.base import BaseProbe

__all__ = ["BaseProbe"]
