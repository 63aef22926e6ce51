"""
Pytest configuration: local imports and shared design fixtures.
"""

# Standard Library
import copy
import os
import sys

# PIP3 modules
import pytest

#============================================


def _ensure_repo_on_path() -> None:
	"""
	Ensure the repository root is on sys.path.
	"""
	repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
	if repo_root not in sys.path:
		sys.path.insert(0, repo_root)


_ensure_repo_on_path()

# local repo modules
import mergekit_print.typography  # noqa: E402

CARD_SCENE = {
	"name": "Badge",
	"pages": [
		{
			"id": "front",
			"width": 100.0,
			"height": 50.0,
			"elements": [
				{
					"id": "name",
					"name": "vdp:text:Name",
					"x": 5,
					"y": 5,
					"width": 90,
					"height": 12,
					"style": {"fontFamily": "Helvetica", "fontSize": 14, "fontWeight": "bold"},
				},
				{
					"id": "address",
					"name": "vdp:address_block:Street,Suite,City",
					"x": 5,
					"y": 20,
					"width": 60,
					"height": 20,
					"style": {"fontSize": 9},
				},
				{
					"id": "serial",
					"name": "vdp:sequence:1:INV-::4",
					"x": 70,
					"y": 40,
					"width": 25,
					"height": 6,
					"style": {"fontSize": 8, "align": "right"},
				},
				{
					"id": "frame",
					"kind": "shape",
					"shape": "rectangle",
					"x": 0,
					"y": 0,
					"width": 100,
					"height": 50,
					"zOrder": -1,
					"style": {"fill": None, "stroke": "#333333", "strokeWidth": 0.3},
				},
			],
		}
	],
}

CARD_RECORDS = [
	{"Name": "Acme Corp", "Street": "1 Main St", "Suite": "", "City": "Reno"},
	{"Name": "Globex", "Street": "9 Elm Rd", "Suite": "Suite 4", "City": "Boise"},
	{"Name": "Initech", "Street": "22 Oak Ave", "Suite": "null", "City": "Austin"},
]


#============================================
@pytest.fixture
def card_scene() -> dict:
	"""
	A one-page 100x50 mm badge design as JSON data.
	"""
	return copy.deepcopy(CARD_SCENE)


#============================================
@pytest.fixture
def card_records() -> list[dict]:
	return copy.deepcopy(CARD_RECORDS)


#============================================
@pytest.fixture
def fonts() -> mergekit_print.typography.FontRegistry:
	return mergekit_print.typography.FontRegistry()
