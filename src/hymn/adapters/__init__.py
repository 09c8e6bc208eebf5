"""
Adapters for external collaborators.

Each adapter implements one protocol from :mod:`hymn.runtime.collaborators`
and translates provider failures into :class:`hymn.infra.exceptions.UpstreamError`.
"""
