"""
Print post-processing: page boxes, crop marks, CMYK conversion and merging.
"""

# Standard Library
import dataclasses
import io
import logging
import os
import pathlib
import subprocess
import threading
import time

# PIP3 modules
import pypdf
import pypdf.errors
import pypdf.generic
import reportlab.pdfgen.canvas

# local repo modules
import mergekit_print as mkp
import mergekit_print.config
import mergekit_print.errors


ServiceSettings = mkp.config.ServiceSettings
ExternalToolError = mkp.errors.ExternalToolError
SceneError = mkp.errors.SceneError
JobCancelled = mkp.errors.JobCancelled

POINTS_PER_MM = mkp.config.POINTS_PER_MM
CROP_MARK_OFFSET_MM = mkp.config.CROP_MARK_OFFSET_MM
CROP_MARK_LENGTH_MM = mkp.config.CROP_MARK_LENGTH_MM
CROP_MARK_SLUG_MM = mkp.config.CROP_MARK_SLUG_MM
CROP_MARK_STROKE = mkp.config.CROP_MARK_STROKE
TOOL_POLL_INTERVAL = mkp.config.TOOL_POLL_INTERVAL

logger = logging.getLogger(__name__)

Rect = tuple[float, float, float, float]
Segment = tuple[tuple[float, float], tuple[float, float]]

# Corner x, corner y, horizontal direction, vertical direction.
CORNERS = (
	("left", "bottom", -1, -1),
	("right", "bottom", 1, -1),
	("left", "top", -1, 1),
	("right", "top", 1, 1),
)


@dataclasses.dataclass(frozen=True)
class PageBoxes:
	media_width: float
	media_height: float
	trim: Rect
	bleed: Rect

	@property
	def origin(self) -> tuple[float, float]:
		return (self.trim[0], self.trim[1])


@dataclasses.dataclass(frozen=True)
class ConversionResult:
	pdf: bytes
	color_mode: str
	fallback: str | None = None


#============================================
def marks_margin(crop_marks: bool) -> float:
	"""
	Extra media margin in mm so crop marks are not clipped.
	"""
	if not crop_marks:
		return 0.0
	return CROP_MARK_OFFSET_MM + CROP_MARK_LENGTH_MM + CROP_MARK_SLUG_MM


#============================================
def compute_page_boxes(
	width: float,
	height: float,
	bleed: float = 0.0,
	crop_marks: bool = False,
) -> PageBoxes:
	"""
	Compute media, bleed and trim boxes for a page.

	The trim box is the nominal page. The bleed box extends it by the bleed
	margin, and the media box adds room for crop marks when requested.

	Args:
		width: Trim width in mm.
		height: Trim height in mm.
		bleed: Bleed margin in mm.
		crop_marks: Whether crop marks will be injected.

	Returns:
		PageBoxes in points.
	"""
	bleed_pt = bleed * POINTS_PER_MM
	outer = bleed_pt + marks_margin(crop_marks) * POINTS_PER_MM
	trim_width = width * POINTS_PER_MM
	trim_height = height * POINTS_PER_MM
	trim = (outer, outer, outer + trim_width, outer + trim_height)
	bleed_box = (
		trim[0] - bleed_pt,
		trim[1] - bleed_pt,
		trim[2] + bleed_pt,
		trim[3] + bleed_pt,
	)
	return PageBoxes(
		media_width=trim_width + 2 * outer,
		media_height=trim_height + 2 * outer,
		trim=trim,
		bleed=bleed_box,
	)


#============================================
def set_page_boxes(page: pypdf.PageObject, boxes: PageBoxes) -> None:
	"""
	Write MediaBox, CropBox, BleedBox and TrimBox onto a page.
	"""
	media = pypdf.generic.RectangleObject([0, 0, boxes.media_width, boxes.media_height])
	page.mediabox = media
	page.cropbox = pypdf.generic.RectangleObject([0, 0, boxes.media_width, boxes.media_height])
	page.bleedbox = pypdf.generic.RectangleObject(list(boxes.bleed))
	page.trimbox = pypdf.generic.RectangleObject(list(boxes.trim))


#============================================
def apply_page_boxes(pdf_bytes: bytes, boxes: list[PageBoxes]) -> bytes:
	"""
	Apply page boxes to every page of a document.

	Args:
		pdf_bytes: Source PDF.
		boxes: One PageBoxes per page, in page order.

	Returns:
		Updated PDF bytes.
	"""
	reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))
	if len(reader.pages) != len(boxes):
		raise ValueError(f"{len(boxes)} page boxes for {len(reader.pages)} pages")
	writer = pypdf.PdfWriter()
	for page, page_boxes in zip(reader.pages, boxes):
		set_page_boxes(page, page_boxes)
		writer.add_page(page)
	return write_pdf(writer)


#============================================
def crop_mark_segments(
	trim: Rect,
	offset: float = CROP_MARK_OFFSET_MM * POINTS_PER_MM,
	length: float = CROP_MARK_LENGTH_MM * POINTS_PER_MM,
) -> list[Segment]:
	"""
	Crop mark line segments for a trim box.

	Each corner gets one horizontal and one vertical segment that start
	offset outside the trim edge and run outward for length.

	Args:
		trim: Trim box (x0, y0, x1, y1).
		offset: Gap between trim edge and mark.
		length: Mark length.

	Returns:
		Eight segments as ((x0, y0), (x1, y1)).
	"""
	x0, y0, x1, y1 = trim
	edges = {"left": x0, "right": x1, "bottom": y0, "top": y1}
	segments: list[Segment] = []
	for x_edge, y_edge, hdir, vdir in CORNERS:
		cx = edges[x_edge]
		cy = edges[y_edge]
		segments.append(((cx + hdir * offset, cy), (cx + hdir * (offset + length), cy)))
		segments.append(((cx, cy + vdir * offset), (cx, cy + vdir * (offset + length))))
	return segments


#============================================
def build_crop_mark_overlay(width: float, height: float, trim: Rect) -> pypdf.PageObject:
	"""
	Build a transparent overlay page holding crop marks.

	Args:
		width: Media width in points.
		height: Media height in points.
		trim: Trim box in points.

	Returns:
		Overlay page.
	"""
	buffer = io.BytesIO()
	pdf = reportlab.pdfgen.canvas.Canvas(buffer, pagesize=(width, height))
	pdf.setLineWidth(CROP_MARK_STROKE)
	# registration black prints on every separation
	pdf.setStrokeColorCMYK(1.0, 1.0, 1.0, 1.0)
	for start, end in crop_mark_segments(trim):
		pdf.line(start[0], start[1], end[0], end[1])
	pdf.save()
	buffer.seek(0)
	reader = pypdf.PdfReader(buffer)
	return reader.pages[0]


#============================================
def inject_crop_marks(pdf_bytes: bytes) -> bytes:
	"""
	Draw crop marks around each page's trim box.

	Existing content is left untouched; marks are merged on top.

	Args:
		pdf_bytes: Source PDF with TrimBox set.

	Returns:
		PDF bytes with marks.
	"""
	reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))
	writer = pypdf.PdfWriter()
	overlay_cache: dict[tuple, pypdf.PageObject] = {}
	for page in reader.pages:
		media = page.mediabox
		trim = page.trimbox
		key = (
			float(media.width),
			float(media.height),
			float(trim.left),
			float(trim.bottom),
			float(trim.right),
			float(trim.top),
		)
		if key not in overlay_cache:
			overlay_cache[key] = build_crop_mark_overlay(key[0], key[1], key[2:])
		page.merge_page(overlay_cache[key])
		writer.add_page(page)
	logger.info("Injected crop marks on %d pages", len(reader.pages))
	return write_pdf(writer)


#============================================
def write_pdf(writer: pypdf.PdfWriter) -> bytes:
	buffer = io.BytesIO()
	writer.write(buffer)
	return buffer.getvalue()


#============================================
def run_external_tool(
	args: list[str],
	timeout: float,
	cancel_event: threading.Event | None = None,
) -> subprocess.CompletedProcess:
	"""
	Run an external program with an argument list.

	The process is polled so a set cancel event kills it without waiting
	for the timeout.

	Args:
		args: Program and arguments; never passed through a shell.
		timeout: Seconds before the process is killed.
		cancel_event: Optional event; when set the process is killed.

	Returns:
		CompletedProcess with captured output.

	Raises:
		ExternalToolError: Missing binary, timeout, or non-zero exit.
		JobCancelled: The cancel event was set while the process ran.
	"""
	try:
		process = subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
	except FileNotFoundError as error:
		raise ExternalToolError(f"{args[0]} is not installed") from error
	except OSError as error:
		raise ExternalToolError(f"{args[0]} could not start: {error}") from error

	deadline = time.monotonic() + timeout
	while True:
		try:
			stdout, stderr = process.communicate(timeout=TOOL_POLL_INTERVAL)
			break
		except subprocess.TimeoutExpired:
			pass
		if cancel_event is not None and cancel_event.is_set():
			process.kill()
			process.communicate()
			raise JobCancelled(f"{args[0]} killed: job cancelled")
		if time.monotonic() >= deadline:
			process.kill()
			process.communicate()
			raise ExternalToolError(f"{args[0]} timed out after {timeout:g}s", timed_out=True)

	if process.returncode != 0:
		message = stderr.decode("utf-8", errors="replace").strip()
		raise ExternalToolError(f"{args[0]} exited with {process.returncode}: {message[-500:]}")
	return subprocess.CompletedProcess(args, process.returncode, stdout, stderr)


#============================================
def ghostscript_cmyk_args(
	ghostscript: str,
	input_path: pathlib.Path,
	output_path: pathlib.Path,
	icc_profile: str | None,
) -> list[str]:
	"""
	Ghostscript arguments for a vector-preserving CMYK conversion.
	"""
	args = [
		ghostscript,
		"-q",
		"-dNOPAUSE",
		"-dBATCH",
		"-dSAFER",
		"-sDEVICE=pdfwrite",
		"-dCompatibilityLevel=1.4",
		"-sColorConversionStrategy=CMYK",
		"-dProcessColorModel=/DeviceCMYK",
		"-dConvertCMYKImagesToRGB=false",
		"-dPreserveHalftoneInfo=true",
		"-dPreserveOverprintSettings=true",
	]
	if icc_profile:
		args.append(f"-sOutputICCProfile={icc_profile}")
	args.append(f"-sOutputFile={output_path}")
	args.append(str(input_path))
	return args


#============================================
def convert_to_cmyk(
	pdf_bytes: bytes,
	settings: ServiceSettings,
	workspace: pathlib.Path,
	cancel_event: threading.Event | None = None,
) -> ConversionResult:
	"""
	Convert a PDF to CMYK with Ghostscript, falling back to the input.

	Args:
		pdf_bytes: RGB PDF.
		settings: Service settings with the gs binary, ICC profile and timeout.
		workspace: Job temp directory.
		cancel_event: Optional event that kills Ghostscript when set.

	Returns:
		ConversionResult; color_mode is "rgb" with a fallback reason when
		conversion failed.

	Raises:
		JobCancelled: The cancel event was set during conversion.
	"""
	icc_profile = settings.icc_profile
	if icc_profile and not os.path.isfile(icc_profile):
		logger.warning("ICC profile %s not found, converting without it", icc_profile)
		icc_profile = None

	input_path = workspace / "rgb.pdf"
	output_path = workspace / "cmyk.pdf"
	args = ghostscript_cmyk_args(settings.ghostscript, input_path, output_path, icc_profile)

	start = time.perf_counter()
	try:
		try:
			input_path.write_bytes(pdf_bytes)
			run_external_tool(args, settings.tool_timeout, cancel_event)
			converted = output_path.read_bytes() if output_path.exists() else b""
		except OSError as error:
			raise ExternalToolError(f"workspace file error: {error}") from error
		if not converted.startswith(b"%PDF"):
			raise ExternalToolError("ghostscript produced no PDF output")
	except ExternalToolError as error:
		reason = "timeout" if error.timed_out else "error"
		logger.warning("CMYK conversion failed, returning RGB: %s", error)
		return ConversionResult(pdf=pdf_bytes, color_mode="rgb", fallback=reason)

	elapsed = time.perf_counter() - start
	logger.info("CMYK conversion: %d -> %d bytes in %.2fs", len(pdf_bytes), len(converted), elapsed)
	return ConversionResult(pdf=converted, color_mode="cmyk")


#============================================
def compose_pdfs(documents: list[bytes]) -> bytes:
	"""
	Concatenate PDFs page by page without re-rendering.

	Args:
		documents: PDF byte strings in output order.

	Returns:
		Merged PDF bytes.

	Raises:
		SceneError: No documents, or one cannot be parsed.
	"""
	if not documents:
		raise SceneError("no PDFs to compose")
	writer = pypdf.PdfWriter()
	for index, data in enumerate(documents):
		try:
			reader = pypdf.PdfReader(io.BytesIO(data))
			for page in reader.pages:
				writer.add_page(page)
		except (pypdf.errors.PyPdfError, ValueError) as error:
			raise SceneError(f"pdfs[{index}] is not a readable PDF: {error}") from error
	merged = write_pdf(writer)
	logger.info("Composed %d PDFs into %d pages", len(documents), len(writer.pages))
	return merged


#============================================
def count_pages(pdf_bytes: bytes) -> int:
	"""
	Count pages in a PDF.
	"""
	reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))
	return len(reader.pages)


#============================================
def ghostscript_version(settings: ServiceSettings) -> str | None:
	"""
	Installed Ghostscript version, or None when unavailable.
	"""
	try:
		result = run_external_tool([settings.ghostscript, "--version"], timeout=10)
	except ExternalToolError as error:
		logger.warning("Ghostscript unavailable: %s", error)
		return None
	return result.stdout.decode("utf-8", errors="replace").strip()


#============================================
def tool_report(settings: ServiceSettings) -> dict:
	"""
	Tool and profile availability for the health endpoint.

	Args:
		settings: Service settings.

	Returns:
		Report mapping.
	"""
	version = ghostscript_version(settings)
	icc_profile = settings.icc_profile
	return {
		"ghostscript": {"available": version is not None, "version": version},
		"icc_profile": {
			"path": icc_profile,
			"present": bool(icc_profile) and os.path.isfile(icc_profile),
		},
	}
