import shutil
import threading
import time

import fitz
import pytest

import mergekit_print.config
import mergekit_print.errors
import mergekit_print.jobs
import mergekit_print.layout
import mergekit_print.scene

jobs = mergekit_print.jobs
PrintOptions = mergekit_print.config.PrintOptions
ServiceSettings = mergekit_print.config.ServiceSettings
JobCancelled = mergekit_print.errors.JobCancelled


#============================================
def _two_page_scene(card_scene: dict) -> dict:
	back = {
		"id": "back",
		"width": 100.0,
		"height": 50.0,
		"elements": [
			{"id": "sku", "name": "barcode:CODE128:Name", "x": 10, "y": 10, "width": 80, "height": 20},
		],
	}
	card_scene["pages"].append(back)
	return card_scene


#============================================
def test_page_count_is_records_times_pages(card_scene, card_records, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(_two_page_scene(card_scene))
	settings = ServiceSettings(temp_dir=str(tmp_path))
	result = jobs.run_merge_job(document, card_records, settings=settings)
	assert result.page_count == 6
	assert result.record_count == 3
	assert result.color_mode == "rgb"
	assert result.color_fallback is None
	assert result.sheet_count == 0
	assert set(result.timings) == {"resolve", "render", "post", "total"}
	assert list(tmp_path.iterdir()) == []
	with fitz.open(stream=result.pdf, filetype="pdf") as pdf:
		assert "Globex" in pdf[2].get_text()


#============================================
def test_progress_is_monotonic_and_ordered(card_scene, card_records, tmp_path) -> None:
	"""
	Parallel resolution reports progress and emits pages in record order.
	"""
	document = mergekit_print.scene.parse_document(card_scene)
	records = card_records * 4
	calls = []
	result = jobs.run_merge_job(
		document,
		records,
		settings=ServiceSettings(temp_dir=str(tmp_path)),
		workers=3,
		progress=lambda current, total: calls.append((current, total)),
	)
	assert calls == [(index + 1, 12) for index in range(12)]
	with fitz.open(stream=result.pdf, filetype="pdf") as pdf:
		names = [page.get_text() for page in pdf]
	for index, record in enumerate(records):
		assert record["Name"] in names[index]
		assert f"INV-{index + 1:04d}" in names[index]


#============================================
def test_cancel_between_records(card_scene, card_records, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(card_scene)
	cancel = threading.Event()
	seen = []

	def progress(current: int, total: int) -> None:
		seen.append(current)
		if current == 2:
			cancel.set()

	with pytest.raises(JobCancelled):
		jobs.run_merge_job(
			document,
			card_records * 3,
			settings=ServiceSettings(temp_dir=str(tmp_path)),
			progress=progress,
			cancel_event=cancel,
		)
	assert seen == [1, 2]


#============================================
def test_cancel_removes_workspace(card_scene, card_records, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(card_scene)
	layout = mergekit_print.layout.calculate_layout(100.0, 50.0)
	cancel = threading.Event()

	def progress(current: int, total: int) -> None:
		if current == total:
			cancel.set()

	with pytest.raises(JobCancelled):
		jobs.run_merge_job(
			document,
			card_records,
			settings=ServiceSettings(temp_dir=str(tmp_path)),
			layout=layout,
			progress=progress,
			cancel_event=cancel,
		)
	assert list(tmp_path.iterdir()) == []


#============================================
def test_empty_records_render_design_once(card_scene, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(card_scene)
	result = jobs.run_merge_job(document, [], settings=ServiceSettings(temp_dir=str(tmp_path)))
	assert result.page_count == 1
	assert result.record_count == 1


#============================================
def test_label_mode(card_scene, card_records, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(card_scene)
	layout = mergekit_print.layout.calculate_layout(100.0, 50.0, items_per_sheet=4)
	options = PrintOptions(crop_marks=True, bleed=3.0, draw_outlines=True)
	result = jobs.run_merge_job(
		document,
		card_records * 3,
		options=options,
		settings=ServiceSettings(temp_dir=str(tmp_path)),
		layout=layout,
	)
	assert result.label_count == 9
	assert result.sheet_count == 3
	assert result.page_count == 3
	assert result.crop_marks is False
	with fitz.open(stream=result.pdf, filetype="pdf") as pdf:
		assert pdf[0].rect.width == pytest.approx(215.9 * mergekit_print.config.POINTS_PER_MM, abs=0.01)


#============================================
def test_crop_marks_and_overflow_reported(card_scene, card_records, tmp_path) -> None:
	card_scene["pages"][0]["elements"].append({
		"id": "tiny",
		"kind": "text",
		"text": "This text is far too long for its box",
		"x": 0,
		"y": 46,
		"width": 8,
		"height": 2,
		"autoFit": True,
		"minFontSize": 6,
	})
	document = mergekit_print.scene.parse_document(card_scene)
	options = PrintOptions(crop_marks=True, bleed=3.0)
	result = jobs.run_merge_job(
		document, card_records, options=options, settings=ServiceSettings(temp_dir=str(tmp_path))
	)
	assert result.crop_marks is True
	assert result.overflow_count == 3
	assert len(result.warnings) == 3


#============================================
def test_cmyk_fallback_is_reported(card_scene, card_records, tmp_path) -> None:
	document = mergekit_print.scene.parse_document(card_scene)
	settings = ServiceSettings(temp_dir=str(tmp_path), ghostscript="mergekit-no-such-gs")
	result = jobs.run_merge_job(document, card_records, options=PrintOptions(cmyk=True), settings=settings)
	assert result.color_mode == "rgb"
	assert result.color_fallback == "error"
	assert result.page_count == 3


#============================================
@pytest.mark.skipif(shutil.which("sh") is None or shutil.which("sleep") is None, reason="needs sh and sleep")
def test_cancel_kills_color_conversion(card_scene, card_records, tmp_path) -> None:
	"""
	Cancelling while Ghostscript runs kills it instead of waiting for the timeout.
	"""
	started = tmp_path / "gs-started"
	fake_gs = tmp_path / "slow-gs"
	fake_gs.write_text(f'#!/bin/sh\ntouch "{started}"\nexec sleep 30\n', encoding="utf-8")
	fake_gs.chmod(0o755)
	work = tmp_path / "work"
	work.mkdir()
	cancel = threading.Event()

	def cancel_when_started() -> None:
		deadline = time.monotonic() + 20
		while not started.exists() and time.monotonic() < deadline:
			time.sleep(0.05)
		cancel.set()

	watcher = threading.Thread(target=cancel_when_started, daemon=True)
	watcher.start()
	document = mergekit_print.scene.parse_document(card_scene)
	settings = ServiceSettings(temp_dir=str(work), ghostscript=str(fake_gs), tool_timeout=60)
	start = time.monotonic()
	with pytest.raises(JobCancelled):
		jobs.run_merge_job(
			document, card_records, options=PrintOptions(cmyk=True), settings=settings, cancel_event=cancel
		)
	watcher.join()
	assert started.exists()
	assert time.monotonic() - start < 30
	assert list(work.iterdir()) == []


#============================================
def test_missing_images_become_warnings(tmp_path) -> None:
	document = mergekit_print.scene.parse_document({
		"width": 50,
		"height": 50,
		"elements": [{"id": "photo", "name": "vdp:image:Photo", "x": 0, "y": 0, "width": 20, "height": 20}],
	})
	result = jobs.run_merge_job(
		document,
		[{"Photo": "ada.png"}],
		settings=ServiceSettings(temp_dir=str(tmp_path), assets_dir=str(tmp_path / "assets")),
	)
	assert result.warnings == ["image 'ada.png' not found"]
