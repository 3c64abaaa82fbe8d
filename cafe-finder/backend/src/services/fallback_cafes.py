"""Built-in cafes served when every Overpass endpoint is unreachable."""

from __future__ import annotations

from typing import List

from models import Cafe


FALLBACK_CAFES: List[dict] = [
    {"id": "1", "name": "Kopi Kenangan", "lat": -7.2575, "lon": 112.7521, "address": "Jl. Pemuda, Surabaya"},
    {"id": "2", "name": "Starbucks Tunjungan Plaza", "lat": -7.2614, "lon": 112.7382, "address": "Tunjungan Plaza, Surabaya"},
    {"id": "3", "name": "Excelso Ciputra World", "lat": -7.2919, "lon": 112.7375, "address": "Ciputra World, Surabaya"},
    {"id": "4", "name": "Fore Coffee Galaxy Mall", "lat": -7.2695, "lon": 112.7714, "address": "Galaxy Mall, Surabaya"},
    {"id": "5", "name": "Kopi Janji Jiwa", "lat": -7.2489, "lon": 112.7509, "address": "Jl. Darmo, Surabaya"},
    {"id": "6", "name": "Point Coffee", "lat": -7.2752, "lon": 112.7480, "address": "Jl. Raya Gubeng, Surabaya"},
    {"id": "7", "name": "Kopi Soe", "lat": -7.2601, "lon": 112.7525, "address": "CBD Surabaya"},
    {"id": "8", "name": "Titik Temu Coffee", "lat": -7.2542, "lon": 112.7465, "address": "Jl. Diponegoro, Surabaya"},
    {"id": "9", "name": "Kopi Tuku", "lat": -7.2633, "lon": 112.7560, "address": "Pakuwon Mall, Surabaya"},
    {"id": "10", "name": "Simetri Coffee", "lat": -7.2458, "lon": 112.7380, "address": "Jl. Basuki Rahmat, Surabaya"},
]


def fallback_cafes() -> List[Cafe]:
    # fresh objects every call so callers may patch them freely
    return [Cafe(**row) for row in FALLBACK_CAFES]
