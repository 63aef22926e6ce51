"""
HTTP service exposing the merge pipeline.
"""

# Standard Library
import argparse
import base64
import binascii
import hmac
import logging
import re
import time
from typing import Any

# PIP3 modules
import fastapi
import fastapi.exceptions
import fastapi.responses
import pydantic
import uvicorn

# local repo modules
import mergekit_print as mkp
import mergekit_print.config
import mergekit_print.errors
import mergekit_print.jobs
import mergekit_print.layout
import mergekit_print.postprocess
import mergekit_print.scene
import mergekit_print.typography


PrintOptions = mkp.config.PrintOptions
ServiceSettings = mkp.config.ServiceSettings
MergeKitError = mkp.errors.MergeKitError
SceneError = mkp.errors.SceneError

logger = logging.getLogger(__name__)


class RenderOptions(pydantic.BaseModel):
	model_config = pydantic.ConfigDict(populate_by_name=True, extra="ignore")

	title: str = "MergeKit Export"
	cmyk: bool = False
	crop_marks: bool = pydantic.Field(default=False, alias="cropMarks")
	bleed: float = pydantic.Field(default=0.0, ge=0.0)
	draw_outlines: bool = pydantic.Field(default=False, alias="drawOutlines")
	include_partial: bool = pydantic.Field(default=True, alias="includePartial")

	def to_print_options(self) -> PrintOptions:
		return PrintOptions(
			title=self.title,
			cmyk=self.cmyk,
			crop_marks=self.crop_marks,
			bleed=self.bleed,
			draw_outlines=self.draw_outlines,
			include_partial=self.include_partial,
		)


class RenderRequest(pydantic.BaseModel):
	scene: Any = None
	records: Any = None
	options: RenderOptions = pydantic.Field(default_factory=RenderOptions)


class BatchRenderRequest(pydantic.BaseModel):
	scenes: list[Any]
	options: RenderOptions = pydantic.Field(default_factory=RenderOptions)


class LabelsRequest(pydantic.BaseModel):
	scene: Any = None
	layout: Any = None
	records: Any = None
	options: RenderOptions = pydantic.Field(default_factory=RenderOptions)


class ComposeRequest(pydantic.BaseModel):
	pdfs: list[str]


#============================================
def safe_filename(title: str) -> str:
	"""
	Reduce a title to a download filename.
	"""
	stem = re.sub(r"[^A-Za-z0-9._-]+", "_", title).strip("_.")
	return f"{stem or 'export'}.pdf"


#============================================
def decode_pdf(value: str, index: int) -> bytes:
	"""
	Decode a base64 PDF, with or without a data URL prefix.
	"""
	if value.startswith("data:"):
		value = value.partition(",")[2]
	try:
		return base64.b64decode(value, validate=True)
	except (binascii.Error, ValueError) as error:
		raise SceneError(f"pdfs[{index}] is not valid base64") from error


#============================================
def pdf_response(pdf: bytes, title: str, headers: dict[str, str]) -> fastapi.Response:
	headers = dict(headers)
	headers["Content-Disposition"] = f'attachment; filename="{safe_filename(title)}"'
	return fastapi.Response(content=pdf, media_type="application/pdf", headers=headers)


#============================================
def job_headers(result) -> dict[str, str]:
	"""
	Response metadata headers for a finished job.
	"""
	headers = {
		"X-Render-Time-Ms": str(result.elapsed_ms),
		"X-Page-Count": str(result.page_count),
		"X-Color-Mode": result.color_mode,
		"X-Crop-Marks": "injected" if result.crop_marks else "none",
		"X-Overflow-Count": str(result.overflow_count),
		"X-Warning-Count": str(len(result.warnings)),
	}
	if result.color_fallback is not None:
		headers["X-Color-Fallback"] = result.color_fallback
	return headers


#============================================
def create_app(settings: ServiceSettings | None = None) -> fastapi.FastAPI:
	"""
	Build the FastAPI application.

	Args:
		settings: Service settings; read from the environment when None.

	Returns:
		FastAPI app.
	"""
	if settings is None:
		settings = mkp.config.load_settings()
	app = fastapi.FastAPI(title="mergekit-print")
	app.state.settings = settings

	def require_api_key(
		x_api_key: str | None = fastapi.Header(default=None),
		authorization: str | None = fastapi.Header(default=None),
	) -> None:
		if not settings.api_secret:
			raise fastapi.HTTPException(status_code=401, detail="API secret is not configured")
		supplied = x_api_key
		if supplied is None and authorization and authorization.lower().startswith("bearer "):
			supplied = authorization[7:].strip()
		if not supplied or not hmac.compare_digest(supplied.encode(), settings.api_secret.encode()):
			raise fastapi.HTTPException(status_code=401, detail="Unauthorized")

	authenticated = [fastapi.Depends(require_api_key)]

	@app.exception_handler(MergeKitError)
	async def handle_input_error(request: fastapi.Request, error: MergeKitError):
		logger.warning("%s %s rejected: %s", request.method, request.url.path, error)
		return fastapi.responses.JSONResponse(status_code=400, content={"error": str(error)})

	@app.exception_handler(fastapi.exceptions.RequestValidationError)
	async def handle_validation_error(request: fastapi.Request, error: fastapi.exceptions.RequestValidationError):
		messages = []
		for item in error.errors():
			location = ".".join(str(part) for part in item.get("loc", ()))
			messages.append(f"{location}: {item.get('msg', 'invalid')}")
		return fastapi.responses.JSONResponse(status_code=400, content={"error": "; ".join(messages)})

	@app.exception_handler(fastapi.HTTPException)
	async def handle_http_error(request: fastapi.Request, error: fastapi.HTTPException):
		return fastapi.responses.JSONResponse(status_code=error.status_code, content={"error": error.detail})

	@app.get("/health")
	def health() -> dict:
		report = mkp.postprocess.tool_report(settings)
		report["status"] = "ok"
		report["fonts"] = sorted(mkp.typography.BASE_FAMILIES)
		return report

	@app.post("/render-vector", dependencies=authenticated)
	@app.post("/render", dependencies=authenticated, include_in_schema=False)
	def render_vector(body: RenderRequest) -> fastapi.Response:
		document = mkp.scene.parse_document(body.scene)
		records = mkp.scene.parse_records(body.records)
		options = body.options.to_print_options()
		result = mkp.jobs.run_merge_job(document, records, options=options, settings=settings)
		return pdf_response(result.pdf, options.title, job_headers(result))

	@app.post("/batch-render-vector", dependencies=authenticated)
	@app.post("/batch-render", dependencies=authenticated, include_in_schema=False)
	def batch_render_vector(body: BatchRenderRequest) -> dict:
		options = body.options.to_print_options()
		results = []
		for index, scene in enumerate(body.scenes):
			try:
				document = mkp.scene.parse_document(scene)
				result = mkp.jobs.run_merge_job(document, [], options=options, settings=settings)
			except MergeKitError as error:
				logger.warning("batch item %d failed: %s", index, error)
				results.append({"index": index, "success": False, "error": str(error) or type(error).__name__})
				continue
			except Exception:
				# one broken scene must not take down the rest of the batch
				logger.exception("batch item %d failed unexpectedly", index)
				results.append({"index": index, "success": False, "error": "internal error rendering scene"})
				continue
			results.append({
				"index": index,
				"success": True,
				"pdf": base64.b64encode(result.pdf).decode("ascii"),
				"pageCount": result.page_count,
				"colorMode": result.color_mode,
			})
		successful = sum(1 for item in results if item["success"])
		return {"total": len(results), "successful": successful, "results": results}

	@app.post("/export-multipage", dependencies=authenticated)
	def export_multipage(body: RenderRequest) -> fastapi.Response:
		document = mkp.scene.parse_document(body.scene)
		records = mkp.scene.parse_records(body.records)
		options = body.options.to_print_options()
		result = mkp.jobs.run_merge_job(document, records, options=options, settings=settings)
		return pdf_response(result.pdf, options.title, job_headers(result))

	@app.post("/export-labels", dependencies=authenticated)
	def export_labels(body: LabelsRequest) -> fastapi.Response:
		document = mkp.scene.parse_document(body.scene)
		first_page = document.pages[0]
		layout = mkp.layout.layout_from_mapping(body.layout, (first_page.width, first_page.height))
		records = mkp.scene.parse_records(body.records)
		options = body.options.to_print_options()
		result = mkp.jobs.run_merge_job(
			document, records, options=options, settings=settings, layout=layout
		)
		headers = job_headers(result)
		headers["X-Label-Count"] = str(result.label_count)
		headers["X-Sheet-Count"] = str(result.sheet_count)
		return pdf_response(result.pdf, options.title, headers)

	@app.post("/compose-pdfs", dependencies=authenticated)
	def compose_pdfs(body: ComposeRequest) -> fastapi.Response:
		start = time.perf_counter()
		documents = [decode_pdf(value, index) for index, value in enumerate(body.pdfs)]
		merged = mkp.postprocess.compose_pdfs(documents)
		elapsed_ms = int(round((time.perf_counter() - start) * 1000))
		headers = {
			"X-Compose-Time-Ms": str(elapsed_ms),
			"X-Page-Count": str(mkp.postprocess.count_pages(merged)),
		}
		return pdf_response(merged, "composed", headers)

	return app


#============================================
def parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description="Serve the mergekit-print HTTP API.")
	parser.add_argument("--host", dest="host", default="127.0.0.1", help="Bind address.")
	parser.add_argument("--port", dest="port", type=int, default=8080, help="Bind port.")
	return parser.parse_args()


#============================================
def main() -> None:
	args = parse_args()
	settings = mkp.config.load_settings()
	logging.basicConfig(
		level=settings.log_level,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	if not settings.api_secret:
		logger.warning("MERGEKIT_API_SECRET is not set; authenticated endpoints will refuse requests")
	uvicorn.run(create_app(settings), host=args.host, port=args.port)


if __name__ == "__main__":
	main()
