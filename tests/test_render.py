import io

import fitz
import PIL.Image
import pytest

import mergekit_print.config
import mergekit_print.layout
import mergekit_print.render
import mergekit_print.resolver
import mergekit_print.scene

render = mergekit_print.render
PrintOptions = mergekit_print.config.PrintOptions
POINTS_PER_MM = mergekit_print.config.POINTS_PER_MM


#============================================
def _resolve_all(card_scene, records, fonts) -> list:
	document = mergekit_print.scene.parse_document(card_scene)
	return [
		mergekit_print.resolver.resolve_document(document, record, index, fonts)
		for index, record in enumerate(records)
	]


#============================================
def _png_bytes(color: tuple[int, int, int]) -> bytes:
	buffer = io.BytesIO()
	PIL.Image.new("RGB", (40, 20), color).save(buffer, format="PNG")
	return buffer.getvalue()


#============================================
def test_parse_hex_color() -> None:
	assert render.parse_hex_color("#ff0000") == (1.0, 0.0, 0.0)
	assert render.parse_hex_color("#0F0") == (0.0, 1.0, 0.0)
	assert render.parse_hex_color("#0000ff80") == (0.0, 0.0, 1.0)
	assert render.parse_hex_color("White") == (1.0, 1.0, 1.0)
	assert render.parse_hex_color("transparent") is None
	assert render.parse_hex_color(None) is None
	assert render.parse_hex_color("not-a-color") == (0.0, 0.0, 0.0)


#============================================
def test_compute_align_offset() -> None:
	assert render.compute_align_offset(100, 40, "left") == 0.0
	assert render.compute_align_offset(100, 40, "center") == 30.0
	assert render.compute_align_offset(100, 40, "bottom") == 60.0
	assert render.compute_align_offset(10, 40, "right") == 0.0


#============================================
def test_normalize_asset_name() -> None:
	assert render.normalize_asset_name("Photos/Logo.PNG?x=1") == "logo"
	assert render.normalize_asset_name("C:\\img\\Badge.jpeg") == "badge"
	assert render.normalize_asset_name("logo") == "logo"


#============================================
def test_asset_library(tmp_path) -> None:
	(tmp_path / "Ada.png").write_bytes(_png_bytes((200, 10, 10)))
	(tmp_path / "broken.png").write_bytes(b"not an image")
	(tmp_path / "notes.txt").write_text("ignored")
	assets = render.AssetLibrary.from_directory(tmp_path)
	reader = assets.lookup("https://cdn.example.com/ada.png")
	assert reader is not None
	assert reader.getSize() == (40, 20)
	assert assets.lookup("ada") is reader
	assert assets.lookup("notes") is None
	assert assets.lookup("broken.png") is None
	assert assets.missing == {"notes", "broken.png"}
	assert render.AssetLibrary.from_directory(tmp_path / "nope").lookup("x") is None


#============================================
def test_render_documents_pages_and_text(card_scene, card_records, fonts) -> None:
	"""
	One page per record, each at trim size with the record's text on it.
	"""
	documents = _resolve_all(card_scene, card_records, fonts)
	pdf_bytes, boxes = render.render_documents(documents, PrintOptions(), render.AssetLibrary())
	assert len(boxes) == 3
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		assert pdf.page_count == 3
		for page, record in zip(pdf, card_records):
			assert page.rect.width == pytest.approx(100 * POINTS_PER_MM, abs=0.01)
			assert page.rect.height == pytest.approx(50 * POINTS_PER_MM, abs=0.01)
			text = page.get_text()
			assert record["Name"] in text
			assert record["City"] in text
		assert "INV-0002" in pdf[1].get_text()
		assert "null" not in pdf[2].get_text()


#============================================
def test_text_is_placed_inside_its_box(card_scene, card_records, fonts) -> None:
	documents = _resolve_all(card_scene, card_records[:1], fonts)
	pdf_bytes, _ = render.render_documents(documents, PrintOptions(), render.AssetLibrary())
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		hits = pdf[0].search_for("Acme Corp")
	assert hits
	rect = hits[0]
	# name box: x 5..95 mm, y 5..17 mm from the top
	assert rect.x0 >= 5 * POINTS_PER_MM - 0.5
	assert rect.x1 <= 95 * POINTS_PER_MM + 0.5
	assert rect.y0 >= 5 * POINTS_PER_MM - 1.0
	assert rect.y1 <= 17 * POINTS_PER_MM + 1.0


#============================================
def test_bleed_and_crop_marks_grow_media(card_scene, card_records, fonts) -> None:
	card_scene["pages"][0]["background"] = "#ffeecc"
	documents = _resolve_all(card_scene, card_records[:1], fonts)
	options = PrintOptions(bleed=3.0, crop_marks=True)
	pdf_bytes, boxes = render.render_documents(documents, options, render.AssetLibrary())
	expected_outer = (3.0 + 15.0) * POINTS_PER_MM
	assert boxes[0].trim[0] == pytest.approx(expected_outer)
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		assert pdf[0].rect.width == pytest.approx(100 * POINTS_PER_MM + 2 * expected_outer, abs=0.01)


#============================================
def test_error_placeholders_are_drawn(fonts) -> None:
	document = mergekit_print.scene.parse_document({
		"width": 80,
		"height": 40,
		"elements": [
			{"id": "ean", "name": "barcode:EAN13:Sku", "x": 0, "y": 0, "width": 40, "height": 15},
			{"id": "photo", "name": "vdp:image:Photo", "x": 40, "y": 0, "width": 30, "height": 30},
		],
	})
	resolved = mergekit_print.resolver.resolve_document(document, {"Sku": "abc", "Photo": "x.png"}, 0, fonts)
	pdf_bytes, _ = render.render_documents([resolved], PrintOptions(), render.AssetLibrary())
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		text = pdf[0].get_text()
	assert "BARCODE ERROR" in text
	assert "IMAGE MISSING" in text


#============================================
def test_images_and_glyphs_render(fonts) -> None:
	document = mergekit_print.scene.parse_document({
		"width": 80,
		"height": 40,
		"elements": [
			{"id": "logo", "kind": "image", "src": "logo.png", "fit": "cover", "x": 0, "y": 0, "width": 20, "height": 20},
			{"id": "sku", "name": "barcode:CODE128:Sku", "x": 20, "y": 0, "width": 40, "height": 15, "rotation": 90},
			{"id": "qr", "name": "qrcode:Q:Url", "x": 60, "y": 20, "width": 15, "height": 15},
			{"id": "dot", "kind": "shape", "shape": "circle", "x": 0, "y": 25, "width": 10, "height": 10,
				"style": {"fill": "#00ff00", "stroke": None}},
		],
	})
	assets = render.AssetLibrary({"logo.png": _png_bytes((0, 0, 255))})
	resolved = mergekit_print.resolver.resolve_document(
		document, {"Sku": "SKU-42", "Url": "https://example.com"}, 0, fonts
	)
	pdf_bytes, _ = render.render_documents([resolved], PrintOptions(), assets)
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		page = pdf[0]
		assert len(page.get_images()) == 1
		assert len(page.get_drawings()) > 20
		assert "ERROR" not in page.get_text()
	assert assets.missing == set()


#============================================
def _tiles(tmp_path, card_scene, card_records, fonts, count: int) -> list:
	records = (card_records * count)[:count]
	documents = _resolve_all(card_scene, records, fonts)
	paths = []
	for index, document in enumerate(documents):
		path = tmp_path / f"tile_{index:05d}.pdf"
		render.render_tile_pdf(document.pages[0], path, render.AssetLibrary())
		paths.append(path)
	return paths


#============================================
def test_impose_tiles_sheet_count(tmp_path, card_scene, card_records, fonts) -> None:
	layout = mergekit_print.layout.calculate_layout(100.0, 50.0)
	assert (layout.columns, layout.rows) == (1, 5)
	paths = _tiles(tmp_path, card_scene, card_records, fonts, 11)
	pdf_bytes, printed = render.impose_tiles(paths, layout, PrintOptions(draw_outlines=True))
	assert printed == 11
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		assert pdf.page_count == 3
		assert pdf[0].rect.width == pytest.approx(215.9 * POINTS_PER_MM, abs=0.01)
		assert pdf[0].get_text().count("Acme Corp") == 2
		assert "INV-0001" in pdf[0].get_text()


#============================================
def test_impose_tiles_drops_partial_sheet(tmp_path, card_scene, card_records, fonts) -> None:
	layout = mergekit_print.layout.calculate_layout(100.0, 50.0)
	paths = _tiles(tmp_path, card_scene, card_records, fonts, 11)
	pdf_bytes, printed = render.impose_tiles(paths, layout, PrintOptions(include_partial=False))
	assert printed == 10
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		assert pdf.page_count == 2


#============================================
def test_fit_tile_scales_uniformly() -> None:
	scale, offset_x, offset_y = render.fit_tile(70.0, 30.0, 66.68, 25.4)
	assert scale == pytest.approx(25.4 / 30.0)
	assert offset_y == pytest.approx(0.0)
	assert offset_x == pytest.approx((66.68 - 70.0 * scale) / 2.0)
	assert render.fit_tile(100.0, 50.0, 100.0, 50.0) == pytest.approx((1.0, 0.0, 0.0))


#============================================
def test_preset_layout_keeps_tile_proportions(tmp_path, fonts) -> None:
	"""
	A 70x30 design on avery-5160 stock shrinks to fit without stretching.
	"""
	document = mergekit_print.scene.parse_document({
		"width": 70,
		"height": 30,
		"elements": [{
			"id": "panel",
			"kind": "shape",
			"x": 0,
			"y": 0,
			"width": 70,
			"height": 30,
			"style": {"fill": "#ff0000", "stroke": None},
		}],
	})
	layout = mergekit_print.layout.layout_from_mapping({"preset": "avery-5160"}, (70.0, 30.0))
	resolved = mergekit_print.resolver.resolve_document(document, {}, 0, fonts)
	path = tmp_path / "tile.pdf"
	render.render_tile_pdf(resolved.pages[0], path, render.AssetLibrary())
	pdf_bytes, printed = render.impose_tiles([path], layout, PrintOptions())
	assert printed == 1
	with fitz.open(stream=pdf_bytes, filetype="pdf") as pdf:
		panels = [
			drawing["rect"]
			for drawing in pdf[0].get_drawings()
			if drawing.get("fill") is not None and drawing["fill"][0] > 0.9 and drawing["fill"][1] < 0.1
		]
	assert len(panels) == 1
	panel = panels[0]
	assert panel.width / panel.height == pytest.approx(70.0 / 30.0, rel=1e-3)
	assert panel.height == pytest.approx(25.4 * POINTS_PER_MM, abs=0.05)
	cell_left = layout.margin_left * POINTS_PER_MM
	cell_width = layout.item_width * POINTS_PER_MM
	# centered horizontally in its cell
	assert panel.x0 - cell_left == pytest.approx(cell_left + cell_width - panel.x1, abs=0.05)
