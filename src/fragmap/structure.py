"""Reference anchors from protein structures or explicit coordinates."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

import numpy as np
import MDAnalysis as mda
from MDAnalysis.exceptions import NoDataError

from fragmap.models import ReferenceAnchor

logger = logging.getLogger("fragmaplab")

DEFAULT_NEAR_RADIUS = 8.0


def _chain_id(residue) -> str:
    for attr in ("chainIDs", "segids"):
        try:
            values = getattr(residue.atoms, attr)
        except (AttributeError, NoDataError):
            continue
        if len(values) and str(values[0]).strip():
            return str(values[0]).strip()
    return ""


def residue_anchors(atoms) -> List[ReferenceAnchor]:
    """One anchor per residue at the centre of geometry of its atoms in ``atoms``."""
    anchors: List[ReferenceAnchor] = []
    for residue in atoms.residues:
        members = atoms.intersection(residue.atoms)
        if members.n_atoms == 0:
            continue
        centroid = members.center_of_geometry()
        chain = _chain_id(residue)
        label = f"{chain}:{residue.resname}{residue.resid}" if chain else f"{residue.resname}{residue.resid}"
        anchors.append(ReferenceAnchor(coordinates=tuple(float(v) for v in centroid), label=label))
    return anchors


def load_residue_anchors(path: str, selection: str = "protein") -> List[ReferenceAnchor]:
    universe = mda.Universe(path)
    atoms = universe.select_atoms(selection)
    if atoms.n_atoms == 0:
        logger.warning("Selection %r matched no atoms in %s", selection, path)
        return []
    anchors = residue_anchors(atoms)
    logger.info("Built %d residue anchors from %s (%s)", len(anchors), path, selection)
    return anchors


def anchors_within(
    anchors: Sequence[ReferenceAnchor],
    point: Sequence[float],
    radius: float = DEFAULT_NEAR_RADIUS,
) -> List[ReferenceAnchor]:
    """Anchors within ``radius`` of ``point``, nearest first."""
    if not anchors:
        return []
    coords = np.asarray([anchor.coordinates for anchor in anchors], dtype=np.float64)
    delta = coords - np.asarray(point, dtype=np.float64).reshape(1, 3)
    dist = np.sqrt(np.einsum("ij,ij->i", delta, delta))
    order = np.argsort(dist, kind="stable")
    return [anchors[int(idx)] for idx in order if dist[idx] <= radius]


def anchors_near_point(
    path: str,
    point: Sequence[float],
    radius: float = DEFAULT_NEAR_RADIUS,
    selection: str = "protein",
) -> List[ReferenceAnchor]:
    return anchors_within(load_residue_anchors(path, selection), point, radius)


def anchors_from_records(records: Iterable[Dict[str, object]]) -> List[ReferenceAnchor]:
    return [ReferenceAnchor.from_dict(dict(record)) for record in records]
