import pytest

import mergekit_print.bindings
import mergekit_print.errors

BindingTag = mergekit_print.bindings.BindingTag
SequenceConfig = mergekit_print.bindings.SequenceConfig
SceneError = mergekit_print.errors.SceneError


#============================================
def test_parse_text_and_image_tags() -> None:
	tag = mergekit_print.bindings.parse_binding_tag("vdp:text:FirstName")
	assert tag == BindingTag(kind="text", field="FirstName")
	tag = mergekit_print.bindings.parse_binding_tag("vdp:image:Photo")
	assert tag == BindingTag(kind="image", field="Photo")


#============================================
def test_parse_address_block_tag() -> None:
	tag = mergekit_print.bindings.parse_binding_tag("vdp:address_block:Name, Street,City,")
	assert tag.kind == "address_block"
	assert tag.fields == ("Name", "Street", "City")


#============================================
def test_parse_sequence_tag() -> None:
	tag = mergekit_print.bindings.parse_binding_tag("vdp:sequence:100:INV-:-A:6")
	assert tag.sequence == SequenceConfig(start=100, prefix="INV-", suffix="-A", padding=6)


#============================================
def test_sequence_tag_defaults() -> None:
	"""
	Blank start and padding fall back to 1 and 4.
	"""
	tag = mergekit_print.bindings.parse_binding_tag("vdp:sequence::No.::")
	assert tag.sequence == SequenceConfig(start=1, prefix="No.", suffix="", padding=4)
	tag = mergekit_print.bindings.parse_binding_tag("vdp:sequence:x:A:B:y")
	assert tag.sequence.start == 1
	assert tag.sequence.padding == 4


#============================================
def test_sequence_prefix_may_contain_colons() -> None:
	tag = mergekit_print.bindings.parse_binding_tag("vdp:sequence:1:ID:X::3")
	assert tag.sequence.prefix == "ID:X"
	assert tag.sequence.suffix == ""
	assert tag.sequence.padding == 3


#============================================
def test_parse_symbol_tags() -> None:
	tag = mergekit_print.bindings.parse_binding_tag("barcode:ean13:Sku")
	assert tag == BindingTag(kind="barcode", field="Sku", symbology="EAN13")
	tag = mergekit_print.bindings.parse_binding_tag("qrcode:H:Url")
	assert tag == BindingTag(kind="qrcode", field="Url", symbology="H")


#============================================
def test_non_tags_return_none() -> None:
	assert mergekit_print.bindings.parse_binding_tag(None) is None
	assert mergekit_print.bindings.parse_binding_tag("") is None
	assert mergekit_print.bindings.parse_binding_tag("Logo") is None
	assert mergekit_print.bindings.parse_binding_tag("note:keep") is None


#============================================
def test_malformed_tags_rejected() -> None:
	for name in (
		"vdp:bogus:Field",
		"vdp:text:",
		"vdp:address_block:,",
		"vdp:sequence:1:A:B",
		"barcode::Sku",
	):
		with pytest.raises(SceneError):
			mergekit_print.bindings.parse_binding_tag(name)


#============================================
def test_format_is_inverse_of_parse() -> None:
	names = [
		"vdp:text:FirstName",
		"vdp:image:Photo",
		"vdp:address_block:Name,Street,City",
		"vdp:sequence:7:INV-:-X:5",
		"barcode:CODE128:Sku",
		"qrcode:Q:Url",
	]
	for name in names:
		tag = mergekit_print.bindings.parse_binding_tag(name)
		assert mergekit_print.bindings.format_binding_tag(tag) == name
		assert mergekit_print.bindings.parse_binding_tag(mergekit_print.bindings.format_binding_tag(tag)) == tag


#============================================
def test_parse_binding_objects() -> None:
	binding = mergekit_print.bindings.parse_binding({"field": " City "}, "el")
	assert binding == mergekit_print.bindings.FieldBinding(field="City")
	binding = mergekit_print.bindings.parse_binding({"static": 42}, "el")
	assert binding == mergekit_print.bindings.StaticBinding(value="42")
	assert mergekit_print.bindings.parse_binding(None, "el") is None
	with pytest.raises(SceneError):
		mergekit_print.bindings.parse_binding({"other": 1}, "el")
	with pytest.raises(SceneError):
		mergekit_print.bindings.parse_binding("City", "el")


#============================================
def test_placeholders() -> None:
	text = "Dear {{ First }} {{Last}}, re {{Missing}}"
	assert mergekit_print.bindings.placeholder_fields(text) == ["First", "Last", "Missing"]
	values = {"First": "Ada", "Last": "Lovelace"}
	filled = mergekit_print.bindings.fill_placeholders(text, values.get)
	assert filled == "Dear Ada Lovelace, re {{Missing}}"
