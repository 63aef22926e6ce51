"""
Binding structures and the colon-delimited name tag encoding.

Design tools store element bindings inside element names, for example
"vdp:text:FirstName" or "barcode:EAN13:Sku". Those strings are parsed here
into BindingTag values and never inspected anywhere else.
"""

# Standard Library
import dataclasses
import re

# local repo modules
import mergekit_print as mkp
import mergekit_print.errors


SceneError = mkp.errors.SceneError

VDP_PREFIX = "vdp"
TAG_KINDS = {
	"text": "text",
	"address_block": "address_block",
	"sequence": "sequence",
	"image": "image",
}
SYMBOL_PREFIXES = ("barcode", "qrcode")
DEFAULT_SEQUENCE_START = 1
DEFAULT_SEQUENCE_PADDING = 4
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


@dataclasses.dataclass(frozen=True)
class StaticBinding:
	value: str


@dataclasses.dataclass(frozen=True)
class FieldBinding:
	field: str


Binding = StaticBinding | FieldBinding


@dataclasses.dataclass(frozen=True)
class SequenceConfig:
	start: int = DEFAULT_SEQUENCE_START
	prefix: str = ""
	suffix: str = ""
	padding: int = 0


@dataclasses.dataclass(frozen=True)
class BindingTag:
	kind: str
	field: str | None = None
	fields: tuple[str, ...] = ()
	sequence: SequenceConfig | None = None
	symbology: str | None = None


#============================================
def _parse_int(value: str, default_value: int) -> int:
	"""
	Parse an integer tag parameter, falling back on blanks and junk.

	Args:
		value: Raw parameter text.
		default_value: Fallback value.

	Returns:
		Parsed integer.
	"""
	value = value.strip()
	if not value:
		return default_value
	try:
		return int(value)
	except ValueError:
		return default_value


#============================================
def parse_binding_tag(name: str | None) -> BindingTag | None:
	"""
	Parse an element name into a binding tag.

	Args:
		name: Element name, possibly a binding tag.

	Returns:
		BindingTag, or None when the name is not a binding tag.

	Raises:
		SceneError: The name uses a tag prefix but is malformed.
	"""
	if not name:
		return None
	name = name.strip()
	prefix, sep, rest = name.partition(":")
	if not sep:
		return None

	if prefix in SYMBOL_PREFIXES:
		symbology, _, field = rest.partition(":")
		symbology = symbology.strip().upper()
		if not symbology:
			raise SceneError(f"binding tag '{name}' has no symbology")
		field = field.strip()
		return BindingTag(kind=prefix, field=field or None, symbology=symbology)

	if prefix != VDP_PREFIX:
		return None

	kind, _, params = rest.partition(":")
	if kind not in TAG_KINDS:
		raise SceneError(f"binding tag '{name}' has unknown kind '{kind}'")

	if kind == "sequence":
		parts = params.split(":")
		if len(parts) < 4:
			raise SceneError(
				f"sequence tag '{name}' needs start:prefix:suffix:padding"
			)
		config = SequenceConfig(
			start=_parse_int(parts[0], DEFAULT_SEQUENCE_START),
			prefix=":".join(parts[1:-2]),
			suffix=parts[-2],
			padding=_parse_int(parts[-1], DEFAULT_SEQUENCE_PADDING),
		)
		return BindingTag(kind="sequence", sequence=config)

	if kind == "address_block":
		fields = tuple(part.strip() for part in params.split(",") if part.strip())
		if not fields:
			raise SceneError(f"address tag '{name}' lists no fields")
		return BindingTag(kind="address_block", fields=fields)

	field = params.strip()
	if not field:
		raise SceneError(f"binding tag '{name}' has no field name")
	return BindingTag(kind=TAG_KINDS[kind], field=field)


#============================================
def format_binding_tag(tag: BindingTag) -> str:
	"""
	Serialize a binding tag back into its element-name form.

	Args:
		tag: BindingTag to encode.

	Returns:
		Name tag string.
	"""
	if tag.kind in SYMBOL_PREFIXES:
		return f"{tag.kind}:{tag.symbology or ''}:{tag.field or ''}"
	if tag.kind == "sequence":
		config = tag.sequence or SequenceConfig()
		return (
			f"{VDP_PREFIX}:sequence:{config.start}:{config.prefix}:"
			f"{config.suffix}:{config.padding}"
		)
	if tag.kind == "address_block":
		return f"{VDP_PREFIX}:address_block:{','.join(tag.fields)}"
	if tag.kind not in TAG_KINDS:
		raise SceneError(f"cannot encode binding tag kind '{tag.kind}'")
	return f"{VDP_PREFIX}:{tag.kind}:{tag.field or ''}"


#============================================
def parse_binding(value: object, context: str) -> Binding | None:
	"""
	Parse an explicit JSON binding object.

	Accepts {"field": "Name"} or {"static": "literal"}.

	Args:
		value: Raw JSON value.
		context: Location string for error messages.

	Returns:
		Binding or None when value is None.
	"""
	if value is None:
		return None
	if not isinstance(value, dict):
		raise SceneError(f"{context}: binding must be an object")
	if "field" in value:
		field = value["field"]
		if not isinstance(field, str) or not field.strip():
			raise SceneError(f"{context}: binding field must be a non-empty string")
		return FieldBinding(field=field.strip())
	if "static" in value:
		static = value["static"]
		if static is None:
			static = ""
		return StaticBinding(value=str(static))
	raise SceneError(f"{context}: binding needs 'field' or 'static'")


#============================================
def placeholder_fields(text: str) -> list[str]:
	"""
	List {{Field}} placeholder names in order of appearance.
	"""
	return [match.group(1).strip() for match in PLACEHOLDER_PATTERN.finditer(text)]


#============================================
def fill_placeholders(text: str, lookup) -> str:
	"""
	Replace {{Field}} placeholders.

	Args:
		text: Template text.
		lookup: Callable returning the replacement string, or None to keep
			the placeholder intact.

	Returns:
		Filled text.
	"""

	def replace(match) -> str:
		value = lookup(match.group(1).strip())
		if value is None:
			return match.group(0)
		return value

	return PLACEHOLDER_PATTERN.sub(replace, text)
