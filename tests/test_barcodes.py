import pytest

import mergekit_print.barcodes
import mergekit_print.errors

BarcodeError = mergekit_print.errors.BarcodeError
barcodes = mergekit_print.barcodes


#============================================
def _inside(glyph) -> bool:
	tolerance = 1e-6
	for x, y, w, h in glyph.rects:
		if x < -tolerance or y < -tolerance:
			return False
		if x + w > glyph.width + tolerance or y + h > glyph.height + tolerance:
			return False
	return True


#============================================
def test_code128_produces_modules() -> None:
	glyph = barcodes.generate_barcode("ABC-12345", "CODE128")
	assert glyph.symbology == "CODE128"
	assert len(glyph.rects) > 10
	assert glyph.width > glyph.height > 0
	assert _inside(glyph)


#============================================
def test_code39_upper_cases() -> None:
	glyph = barcodes.generate_barcode("item-7", "code39")
	assert glyph.symbology == "CODE39"
	assert glyph.rects
	with pytest.raises(BarcodeError):
		barcodes.generate_barcode("item_7", "CODE39")


#============================================
def test_gtin_values() -> None:
	"""
	EAN13 and UPC-A take data digits with or without a valid check digit.
	"""
	assert barcodes.gtin_check_digit("400638133393") == "1"
	assert barcodes.gtin_check_digit("03600029145") == "2"
	assert barcodes.generate_barcode("4006381333931", "EAN13").rects
	assert barcodes.generate_barcode("400638133393", "EAN-13").rects
	assert barcodes.generate_barcode("036000291452", "UPC-A").rects
	assert barcodes.generate_barcode("03600029145", "upca").rects


#============================================
def test_gtin_rejects_bad_input() -> None:
	for value in ("abc", "12345", "4006381333932", "40063813339311", ""):
		with pytest.raises(BarcodeError):
			barcodes.generate_barcode(value, "EAN13")
	with pytest.raises(BarcodeError):
		barcodes.generate_barcode("036000291453", "UPC-A")


#============================================
def test_code128_rejects_non_ascii() -> None:
	with pytest.raises(BarcodeError):
		barcodes.generate_barcode("Café", "CODE128")


#============================================
def test_unsupported_symbology() -> None:
	assert barcodes.normalize_symbology("PDF417") is None
	assert barcodes.normalize_symbology(None) is None
	with pytest.raises(BarcodeError):
		barcodes.generate_barcode("123", "PDF417")


#============================================
def test_qr_levels() -> None:
	assert barcodes.normalize_qr_level(None) == "M"
	assert barcodes.normalize_qr_level(" q ") == "Q"
	assert barcodes.normalize_qr_level("X") is None
	for level in barcodes.QR_LEVELS:
		glyph = barcodes.generate_qr("https://example.com/item/42", level)
		assert glyph.rects
		assert glyph.width == pytest.approx(glyph.height)
		assert _inside(glyph)
	with pytest.raises(BarcodeError):
		barcodes.generate_qr("data", "Z")
	with pytest.raises(BarcodeError):
		barcodes.generate_qr("", "M")


#============================================
def test_higher_qr_level_is_denser() -> None:
	low = barcodes.generate_qr("https://example.com/item/42", "L")
	high = barcodes.generate_qr("https://example.com/item/42", "H")
	assert len(high.rects) > len(low.rects)


#============================================
def test_fit_glyph_centers_and_keeps_aspect() -> None:
	glyph = barcodes.BarcodeGlyph(symbology="QR", value="x", rects=(), width=10.0, height=10.0)
	scale, offset_x, offset_y = barcodes.fit_glyph(glyph, 40.0, 20.0)
	assert scale == pytest.approx(2.0)
	assert offset_x == pytest.approx(10.0)
	assert offset_y == pytest.approx(0.0)

	wide = barcodes.BarcodeGlyph(symbology="CODE128", value="x", rects=(), width=50.0, height=10.0)
	scale, offset_x, offset_y = barcodes.fit_glyph(wide, 25.0, 25.0)
	assert scale == pytest.approx(0.5)
	assert offset_x == pytest.approx(0.0)
	assert offset_y == pytest.approx(10.0)
