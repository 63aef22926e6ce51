"""
Merge job runner: resolve records, render, post-process.
"""

# Standard Library
import concurrent.futures
import contextlib
import logging
import pathlib
import shutil
import tempfile
import threading
import time
import uuid
from typing import Callable

# local repo modules
import mergekit_print as mkp
import mergekit_print.config
import mergekit_print.errors
import mergekit_print.layout
import mergekit_print.postprocess
import mergekit_print.render
import mergekit_print.resolver
import mergekit_print.scene
import mergekit_print.typography


JobResult = mkp.config.JobResult
LayoutConfig = mkp.config.LayoutConfig
PrintOptions = mkp.config.PrintOptions
ServiceSettings = mkp.config.ServiceSettings
JobCancelled = mkp.errors.JobCancelled
DesignDocument = mkp.scene.DesignDocument
ResolvedDocument = mkp.resolver.ResolvedDocument
AssetLibrary = mkp.render.AssetLibrary
FontRegistry = mkp.typography.FontRegistry

ProgressCallback = Callable[[int, int], None]

logger = logging.getLogger(__name__)


#============================================
@contextlib.contextmanager
def job_workspace(temp_dir: str | None, job_id: str):
	"""
	Temporary directory for one job, removed on every exit path.

	Args:
		temp_dir: Parent directory, or None for the system default.
		job_id: Job id used in the directory name.

	Yields:
		Workspace path.
	"""
	path = pathlib.Path(tempfile.mkdtemp(prefix=f"mergekit-{job_id}-", dir=temp_dir))
	try:
		yield path
	finally:
		try:
			shutil.rmtree(path)
		except OSError as error:
			logger.warning("job %s: could not remove workspace %s: %s", job_id, path, error)


class MergeJob:
	"""
	One merge of a design document with an ordered list of records.

	The document is an immutable baseline. Every record is resolved against
	it independently, so workers > 1 resolves records in a thread pool while
	output order and progress order stay those of the record list.
	"""

	def __init__(
		self,
		document: DesignDocument,
		records: list[dict[str, object]],
		options: PrintOptions | None = None,
		settings: ServiceSettings | None = None,
		layout: LayoutConfig | None = None,
		assets: AssetLibrary | None = None,
		workers: int = 1,
		progress: ProgressCallback | None = None,
		cancel_event: threading.Event | None = None,
		job_id: str | None = None,
	):
		self.document = document
		# an empty record list still renders the design once
		self.records = list(records) or [{}]
		self.options = options or PrintOptions()
		self.settings = settings or ServiceSettings()
		self.layout = layout
		self.assets = assets or AssetLibrary.from_directory(self.settings.assets_dir)
		self.workers = max(1, workers)
		self.progress = progress
		self.cancel_event = cancel_event
		self.job_id = job_id or uuid.uuid4().hex[:8]
		self.fonts = FontRegistry(self.settings.fonts_dir)

	def check_cancelled(self) -> None:
		if self.cancel_event is not None and self.cancel_event.is_set():
			raise JobCancelled(f"job {self.job_id} cancelled")

	def report(self, current: int, total: int) -> None:
		if self.progress is not None:
			self.progress(current, total)

	def resolve_all(self) -> list[ResolvedDocument]:
		"""
		Resolve every record in order.

		Returns:
			Resolved documents in record order.
		"""
		total = len(self.records)
		resolved: list[ResolvedDocument] = []

		if self.workers == 1:
			for index, record in enumerate(self.records):
				self.check_cancelled()
				resolved.append(
					mkp.resolver.resolve_document(self.document, record, index, self.fonts)
				)
				self.report(index + 1, total)
			return resolved

		executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.workers)
		try:
			futures = [
				executor.submit(
					mkp.resolver.resolve_document, self.document, record, index, self.fonts
				)
				for index, record in enumerate(self.records)
			]
			for index, future in enumerate(futures):
				self.check_cancelled()
				resolved.append(future.result())
				self.report(index + 1, total)
		finally:
			executor.shutdown(wait=True, cancel_futures=True)
		return resolved

	def render_labels(
		self,
		resolved: list[ResolvedDocument],
		workspace: pathlib.Path,
	) -> tuple[bytes, int]:
		"""
		Render one tile per resolved page and impose the tiles onto sheets.
		"""
		tile_paths: list[pathlib.Path] = []
		for document in resolved:
			for page in document.pages:
				self.check_cancelled()
				tile_path = workspace / f"tile_{len(tile_paths):05d}.pdf"
				mkp.render.render_tile_pdf(page, tile_path, self.assets)
				tile_paths.append(tile_path)
		return mkp.render.impose_tiles(tile_paths, self.layout, self.options)

	def run(self) -> JobResult:
		"""
		Run the job.

		Returns:
			JobResult with PDF bytes and metadata.

		Raises:
			JobCancelled: The cancel event was set.
		"""
		start = time.perf_counter()
		timings: dict[str, float] = {}
		logger.info(
			"job %s: %d records, %d pages per record",
			self.job_id,
			len(self.records),
			len(self.document.pages),
		)

		stage_start = time.perf_counter()
		resolved = self.resolve_all()
		timings["resolve"] = time.perf_counter() - stage_start

		color_mode = "rgb"
		color_fallback = None
		crop_marks = False
		label_count = 0
		with job_workspace(self.settings.temp_dir, self.job_id) as workspace:
			stage_start = time.perf_counter()
			boxes = []
			if self.layout is not None:
				pdf_bytes, label_count = self.render_labels(resolved, workspace)
			else:
				pdf_bytes, boxes = mkp.render.render_documents(resolved, self.options, self.assets)
			timings["render"] = time.perf_counter() - stage_start

			self.check_cancelled()
			stage_start = time.perf_counter()
			if boxes:
				pdf_bytes = mkp.postprocess.apply_page_boxes(pdf_bytes, boxes)
				if self.options.crop_marks:
					pdf_bytes = mkp.postprocess.inject_crop_marks(pdf_bytes)
					crop_marks = True
			if self.options.cmyk:
				conversion = mkp.postprocess.convert_to_cmyk(
					pdf_bytes, self.settings, workspace, self.cancel_event
				)
				pdf_bytes = conversion.pdf
				color_mode = conversion.color_mode
				color_fallback = conversion.fallback
				if color_fallback is not None:
					logger.warning("job %s: CMYK fallback (%s)", self.job_id, color_fallback)
				elif boxes:
					pdf_bytes = self.restore_boxes(pdf_bytes, boxes)
			timings["post"] = time.perf_counter() - stage_start

		page_count = mkp.postprocess.count_pages(pdf_bytes)
		warnings = [warning for document in resolved for warning in document.warnings]
		for reference in sorted(self.assets.missing):
			warnings.append(f"image '{reference}' not found")
		for warning in warnings:
			logger.debug("job %s: %s", self.job_id, warning)
		timings["total"] = time.perf_counter() - start

		result = JobResult(
			pdf=pdf_bytes,
			page_count=page_count,
			record_count=len(self.records),
			label_count=label_count,
			sheet_count=page_count if self.layout is not None else 0,
			elapsed_ms=int(round(timings["total"] * 1000)),
			color_mode=color_mode,
			crop_marks=crop_marks,
			color_fallback=color_fallback,
			overflow_count=sum(document.overflow_count for document in resolved),
			warnings=warnings,
			font_substitutions=dict(self.fonts.substitutions),
			timings=timings,
		)
		logger.info(
			"job %s: %d pages, %d bytes, %s, %d ms",
			self.job_id,
			result.page_count,
			len(result.pdf),
			result.color_mode,
			result.elapsed_ms,
		)
		return result

	def restore_boxes(self, pdf_bytes: bytes, boxes: list) -> bytes:
		"""
		Re-apply page boxes after Ghostscript rewrote the document.
		"""
		if mkp.postprocess.count_pages(pdf_bytes) != len(boxes):
			logger.warning("job %s: page count changed during conversion, boxes not restored", self.job_id)
			return pdf_bytes
		return mkp.postprocess.apply_page_boxes(pdf_bytes, boxes)


#============================================
def run_merge_job(
	document: DesignDocument,
	records: list[dict[str, object]],
	options: PrintOptions | None = None,
	settings: ServiceSettings | None = None,
	layout: LayoutConfig | None = None,
	assets: AssetLibrary | None = None,
	workers: int = 1,
	progress: ProgressCallback | None = None,
	cancel_event: threading.Event | None = None,
) -> JobResult:
	"""
	Build and run a MergeJob.

	Args:
		document: Parsed design document.
		records: Ordered data records.
		options: Print options.
		settings: Service settings.
		layout: Label sheet layout; None renders one page per record page.
		assets: Image assets.
		workers: Resolver threads.
		progress: Called with (current, total) after each record.
		cancel_event: Set to cancel between records.

	Returns:
		JobResult.
	"""
	job = MergeJob(
		document,
		records,
		options=options,
		settings=settings,
		layout=layout,
		assets=assets,
		workers=workers,
		progress=progress,
		cancel_event=cancel_event,
	)
	return job.run()
