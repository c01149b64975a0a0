"""
Default ticker universe (energy sector, filtered by options volume).
"""

import json
import logging
from pathlib import Path
from typing import List, Union

from .models import UniverseEntry

logger = logging.getLogger(__name__)

DEFAULT_UNIVERSE: List[UniverseEntry] = [
    UniverseEntry("XOM", "Exxon Mobil Corp", "Oil & Gas Integrated", "USA"),
    UniverseEntry("CVE", "Cenovus Energy Inc", "Oil & Gas Integrated", "Canada"),
    UniverseEntry("SLB", "SLB Ltd", "Oil & Gas Equipment & Services", "USA"),
    UniverseEntry("HAL", "Halliburton Co", "Oil & Gas Equipment & Services", "USA"),
    UniverseEntry("ET", "Energy Transfer LP", "Oil & Gas Midstream", "USA"),
    UniverseEntry("KMI", "Kinder Morgan Inc", "Oil & Gas Midstream", "USA"),
    UniverseEntry("DVN", "Devon Energy Corp", "Oil & Gas E&P", "USA"),
    UniverseEntry("EQT", "EQT Corp", "Oil & Gas E&P", "USA"),
    UniverseEntry("CTRA", "Coterra Energy Inc", "Oil & Gas E&P", "USA"),
    UniverseEntry("PR", "Permian Resources Corp", "Oil & Gas E&P", "USA"),
    UniverseEntry("CNQ", "Canadian Natural Resources", "Oil & Gas E&P", "Canada"),
    UniverseEntry("BTE", "Baytex Energy Corp", "Oil & Gas E&P", "Canada"),
    UniverseEntry("RIG", "Transocean Ltd", "Oil & Gas Drilling", "Switzerland"),
    UniverseEntry("PBR", "Petroleo Brasileiro S.A.", "Oil & Gas Integrated", "Brazil"),
    UniverseEntry("DNN", "Denison Mines Corp", "Uranium", "Canada"),
    UniverseEntry("UEC", "Uranium Energy Corp", "Uranium", "USA"),
    UniverseEntry("UUUU", "Energy Fuels Inc", "Uranium", "USA"),
    UniverseEntry("CRGY", "Crescent Energy Co", "Oil & Gas E&P", "USA"),
    UniverseEntry("KOS", "Kosmos Energy Ltd", "Oil & Gas E&P", "USA"),
    UniverseEntry("VG", "Venture Global Inc", "Oil & Gas Midstream", "USA"),
    UniverseEntry("SU", "Suncor Energy Inc", "Oil & Gas Integrated", "Canada"),
    UniverseEntry("OXY", "Occidental Petroleum Corp", "Oil & Gas E&P", "USA"),
    UniverseEntry("WMB", "Williams Cos Inc", "Oil & Gas Midstream", "USA"),
    UniverseEntry("BP", "BP plc ADR", "Oil & Gas Integrated", "United Kingdom"),
    UniverseEntry("CVX", "Chevron Corp", "Oil & Gas Integrated", "USA"),
    UniverseEntry("COP", "Conoco Phillips", "Oil & Gas E&P", "USA"),
    UniverseEntry("CCJ", "Cameco Corp", "Uranium", "Canada"),
    UniverseEntry("BKR", "Baker Hughes Co", "Oil & Gas Equipment & Services", "USA"),
    UniverseEntry("BORR", "Borr Drilling Ltd", "Oil & Gas Drilling", "Bermuda"),
    UniverseEntry("VLO", "Valero Energy Corp", "Oil & Gas Refining & Marketing", "USA"),
    UniverseEntry("LNG", "Cheniere Energy Inc", "Oil & Gas Midstream", "USA"),
    UniverseEntry("BTU", "Peabody Energy Corp", "Thermal Coal", "USA"),
    UniverseEntry("EQNR", "Equinor ASA ADR", "Oil & Gas Integrated", "Norway"),
    UniverseEntry("TTE", "TotalEnergies SE", "Oil & Gas Integrated", "France"),
    UniverseEntry("YPF", "YPF ADR", "Oil & Gas Integrated", "Argentina"),
]

INDUSTRIES = [
    "Oil & Gas Integrated",
    "Oil & Gas E&P",
    "Oil & Gas Equipment & Services",
    "Oil & Gas Midstream",
    "Oil & Gas Drilling",
    "Oil & Gas Refining & Marketing",
    "Uranium",
    "Thermal Coal",
]


def load_universe(path: Union[str, Path]) -> List[UniverseEntry]:
    """
    Load a universe from a JSON file.

    The file holds a list of objects with ``ticker``, ``company``,
    ``industry`` and ``country`` keys. Entries without a ticker are skipped.

    Args:
        path: Path to the JSON file

    Returns:
        Universe entries in file order
    """
    with open(path, "r") as f:
        raw = json.load(f)

    entries = [UniverseEntry.from_dict(item) for item in raw if isinstance(item, dict)]
    entries = [e for e in entries if e.ticker]
    logger.info(f"Loaded {len(entries)} universe entries from {path}")
    return entries
