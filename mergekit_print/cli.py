"""
CLI entry point for local merge jobs.
"""

# Standard Library
import argparse
import csv
import json
import logging
import pathlib
import sys

# local repo modules
import mergekit_print as mkp
import mergekit_print.config
import mergekit_print.errors
import mergekit_print.jobs
import mergekit_print.layout
import mergekit_print.resolver
import mergekit_print.scene


PrintOptions = mkp.config.PrintOptions
MergeKitError = mkp.errors.MergeKitError

PROGRESS_BAR_WIDTH = mkp.config.PROGRESS_BAR_WIDTH
PROGRESS_UPDATE_EVERY = mkp.config.PROGRESS_UPDATE_EVERY


#============================================
def print_progress(prefix: str, current: int, total: int) -> None:
	"""
	Print a simple progress bar.

	Args:
		prefix: Label text.
		current: Current count.
		total: Total count.
	"""
	if total <= 0:
		return
	percent = int(round((current / total) * 100.0))
	filled = int(round(PROGRESS_BAR_WIDTH * percent / 100.0))
	bar = "#" * filled + "-" * (PROGRESS_BAR_WIDTH - filled)
	print(f"{prefix} [{bar}] {current}/{total} ({percent}%)", end="\r")
	if current == total:
		print()


#============================================
def progress_printer(current: int, total: int) -> None:
	if current == total or current % PROGRESS_UPDATE_EVERY == 0:
		print_progress("Resolving", current, total)


#============================================
def load_records(path: pathlib.Path | None) -> tuple[list[dict[str, object]], list[str]]:
	"""
	Load records from a CSV or JSON file.

	Args:
		path: Records file, or None for no records.

	Returns:
		(records, field names in header order).
	"""
	if path is None:
		return [], []
	if path.suffix.lower() == ".json":
		with open(path, "r", encoding="utf-8") as handle:
			data = json.load(handle)
		records = mkp.scene.parse_records(data)
		fields: dict[str, None] = {}
		for record in records:
			for key in record:
				fields.setdefault(key, None)
		return records, list(fields)
	with open(path, "r", encoding="utf-8-sig", newline="") as handle:
		reader = csv.DictReader(handle)
		rows = []
		for row in reader:
			# extra cells land under the None restkey
			if None in row:
				raise mkp.errors.SceneError(
					f"{path.name} line {reader.line_num}: more cells than header fields"
				)
			rows.append(row)
		records = mkp.scene.parse_records(rows)
		return records, list(reader.fieldnames or [])


#============================================
def build_layout(args: argparse.Namespace, document) -> mkp.config.LayoutConfig | None:
	"""
	Build the label sheet layout from CLI args.

	Args:
		args: Parsed argparse namespace.
		document: Parsed design document.

	Returns:
		LayoutConfig, or None when not exporting labels.
	"""
	if not args.labels:
		return None
	sheet_width, sheet_height = mkp.layout.resolve_sheet_size(args.sheet)
	first_page = document.pages[0]
	item_width, item_height = first_page.width, first_page.height
	if args.preset:
		item_width, item_height = mkp.layout.resolve_preset(args.preset)
	if args.item_width is not None:
		item_width = args.item_width
	if args.item_height is not None:
		item_height = args.item_height
	return mkp.layout.calculate_layout(
		item_width,
		item_height,
		sheet_width,
		sheet_height,
		args.items_per_sheet,
	)


#============================================
def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
	"""
	Parse command line arguments.

	Returns:
		Parsed argparse namespace.
	"""
	parser = argparse.ArgumentParser(description="Merge data records into a print design and write a PDF.")
	parser.add_argument("design", help="Design document JSON file.")

	input_group = parser.add_argument_group("Input")
	input_group.add_argument("-r", "--records", dest="records_path", default=None, help="Records CSV or JSON file.")
	input_group.add_argument("-a", "--assets", dest="assets_dir", default=None, help="Directory of image assets.")
	input_group.add_argument("-f", "--fonts", dest="fonts_dir", default=None, help="Directory of TrueType fonts.")

	output_group = parser.add_argument_group("Output")
	output_group.add_argument("-o", "--output", dest="output_path", required=True, help="Output PDF path.")
	output_group.add_argument("-t", "--title", dest="title", default="MergeKit Export", help="PDF title.")

	label_group = parser.add_argument_group("Label sheets")
	label_group.add_argument("-l", "--labels", dest="labels", action="store_true", help="Impose items onto label sheets.")
	label_group.add_argument("-s", "--sheet", dest="sheet", default="letter", help="Sheet size name (letter, legal, a3, a4, a5).")
	label_group.add_argument("--preset", dest="preset", default=None, help="Label stock preset, e.g. avery-5160.")
	label_group.add_argument("--item-width", dest="item_width", type=float, default=None, help="Item width in mm.")
	label_group.add_argument("--item-height", dest="item_height", type=float, default=None, help="Item height in mm.")
	label_group.add_argument("--items-per-sheet", dest="items_per_sheet", type=int, default=None, help="Items per sheet.")
	label_group.add_argument("-d", "--draw-outlines", dest="draw_outlines", action="store_true", help="Draw item outlines.")
	label_group.add_argument("-p", "--include-partial", dest="include_partial", action="store_true", help="Include a partial final sheet.")
	label_group.add_argument("-P", "--no-include-partial", dest="include_partial", action="store_false", help="Drop a partial final sheet.")

	print_group = parser.add_argument_group("Print production")
	print_group.add_argument("-b", "--bleed", dest="bleed", type=float, default=0.0, help="Bleed margin in mm.")
	print_group.add_argument("-k", "--crop-marks", dest="crop_marks", action="store_true", help="Inject crop marks.")
	print_group.add_argument("-c", "--cmyk", dest="cmyk", action="store_true", help="Convert to CMYK with Ghostscript.")
	print_group.add_argument("--icc", dest="icc_profile", default=None, help="Output ICC profile for CMYK conversion.")

	run_group = parser.add_argument_group("Run")
	run_group.add_argument("-w", "--workers", dest="workers", type=int, default=1, help="Resolver threads.")
	run_group.add_argument("--log-level", dest="log_level", default=None, help="Logging level.")

	parser.set_defaults(
		labels=False,
		draw_outlines=False,
		include_partial=True,
		crop_marks=False,
		cmyk=False,
	)

	args = parser.parse_args(argv)
	return args


#============================================
def run_pipeline(args: argparse.Namespace) -> mkp.config.JobResult:
	"""
	Run a merge job from CLI args and write the PDF.

	Args:
		args: Parsed argparse namespace.

	Returns:
		JobResult.
	"""
	settings = mkp.config.load_settings()
	if args.icc_profile:
		settings.icc_profile = args.icc_profile
	if args.fonts_dir:
		settings.fonts_dir = args.fonts_dir
	if args.assets_dir:
		settings.assets_dir = args.assets_dir

	print("MergeKit print pipeline")
	print(f"Design: {args.design}")
	print(f"Output PDF: {args.output_path}")

	with open(args.design, "r", encoding="utf-8") as handle:
		document = mkp.scene.parse_document(json.load(handle))
	print(f"Design pages: {len(document.pages)}")

	records_path = pathlib.Path(args.records_path) if args.records_path else None
	records, header = load_records(records_path)
	print(f"Records loaded: {len(records)}")
	if records_path is not None:
		known = {name.lower() for name in header}
		missing = [
			field for field in mkp.resolver.extract_used_fields(document)
			if field.lower() not in known
		]
		if missing:
			print(f"Fields missing from records: {', '.join(missing)}")

	layout = build_layout(args, document)
	if layout is not None:
		print(
			f"Layout: {layout.columns}x{layout.rows} grid, "
			f"{layout.items_per_sheet} items per sheet"
		)

	options = PrintOptions(
		title=args.title,
		cmyk=args.cmyk,
		crop_marks=args.crop_marks,
		bleed=args.bleed,
		draw_outlines=args.draw_outlines,
		include_partial=args.include_partial,
	)
	result = mkp.jobs.run_merge_job(
		document,
		records,
		options=options,
		settings=settings,
		layout=layout,
		workers=args.workers,
		progress=progress_printer,
	)

	output_path = pathlib.Path(args.output_path)
	output_path.parent.mkdir(parents=True, exist_ok=True)
	output_path.write_bytes(result.pdf)

	print(f"Pages written: {result.page_count}")
	if layout is not None:
		print(f"Labels printed: {result.label_count}")
	print(f"Color mode: {result.color_mode}")
	if result.color_fallback is not None:
		print(f"CMYK conversion failed ({result.color_fallback}), wrote RGB")
	if result.overflow_count:
		print(f"Text overflowing at minimum size: {result.overflow_count}")
	for family, substitute in sorted(result.font_substitutions.items()):
		print(f"Font substituted: {family} -> {substitute}")
	print(f"Warnings: {len(result.warnings)}")
	timings = result.timings
	print(
		"Timing: resolve={:.2f}s render={:.2f}s post={:.2f}s total={:.2f}s".format(
			timings.get("resolve", 0.0),
			timings.get("render", 0.0),
			timings.get("post", 0.0),
			timings.get("total", 0.0),
		)
	)
	return result


#============================================
def main(argv: list[str] | None = None) -> None:
	"""
	Main entry point.
	"""
	args = parse_args(argv)
	level = args.log_level or mkp.config.load_settings().log_level
	logging.basicConfig(level=level.upper(), format="%(levelname)s %(name)s: %(message)s")
	try:
		run_pipeline(args)
	except MergeKitError as error:
		print(f"Error: {error}", file=sys.stderr)
		raise SystemExit(2) from error


if __name__ == "__main__":
	main()
