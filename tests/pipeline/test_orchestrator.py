import asyncio

import pytest

from storyclip.errors import GenerationTimedOut, SegmentationFailed
from storyclip.models import AudioAsset, PipelineState, Progress, ReferenceImage, VideoSegment
from storyclip.pipeline.orchestrator import StoryPipeline
from storyclip.utils.blob_store import BlobStore


def _segments(n):
    return [
        VideoSegment(
            topicSummary=f"Scene {i}",
            videoPrompt=f"prompt {i}",
            characterId="char_x" if i == 0 else None,
            startTime=i * 6.0,
            endTime=i * 6.0 + 6.0,
        )
        for i in range(n)
    ]


class FakeSegmenter:
    def __init__(self, segments=None, error=None):
        self.segments = segments or []
        self.error = error
        self.calls = 0

    async def segment(self, audio, context, characters, report=None):
        self.calls += 1
        if report:
            report(Progress(stage="Analyzing audio", current=0, total=1, message="Transcribing and creating scenes..."))
        await asyncio.sleep(0)
        if self.error:
            raise self.error
        if report:
            report(Progress(stage="Analyzing audio", current=1, total=1, message="Audio analysis complete."))
        return list(self.segments)


class FakeGenerator:
    """Records call order and the number of generate() calls in flight at once."""

    def __init__(self, blobs, fail_at=None, delays=None):
        self.blobs = blobs
        self.fail_at = fail_at
        self.delays = delays or {}
        self.calls = []
        self.images = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, segment, reference_image=None):
        index = len(self.calls)
        self.calls.append(segment)
        self.images.append(reference_image)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            for _ in range(self.delays.get(index, 1)):
                await asyncio.sleep(0)
            if self.fail_at == index:
                raise GenerationTimedOut(600)
            return self.blobs.create(segment.video_prompt.encode(), "video/mp4")
        finally:
            self.in_flight -= 1


def _pipeline(segments=None, seg_error=None, fail_at=None, delays=None):
    blobs = BlobStore()
    generator = FakeGenerator(blobs, fail_at=fail_at, delays=delays)
    segmenter = FakeSegmenter(segments, seg_error)
    pipeline = StoryPipeline(segmenter=segmenter, generator=generator, blobs=blobs)
    pipeline.set_audio(AudioAsset(data=b"ID3", mime_type="audio/mpeg", name="story.mp3"))
    return pipeline, segmenter, generator


@pytest.mark.asyncio
async def test_run_without_audio_is_a_noop():
    blobs = BlobStore()
    segmenter = FakeSegmenter(_segments(1))
    pipeline = StoryPipeline(segmenter=segmenter, generator=FakeGenerator(blobs), blobs=blobs)

    assert await pipeline.run() is PipelineState.IDLE
    assert segmenter.calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [1, 3, 7])
async def test_all_segments_generated_in_order(n):
    pipeline, segmenter, generator = _pipeline(_segments(n), delays={0: 5, 1: 0})

    state = await pipeline.run()

    assert state is PipelineState.COMPLETE
    assert segmenter.calls == 1
    assert [s.topic_summary for s in generator.calls] == [f"Scene {i}" for i in range(n)]
    assert [c.segment for c in pipeline.clips] == generator.calls
    assert generator.max_in_flight == 1
    assert pipeline.progress == Progress(stage="Finished", current=n, total=n, message="All clips generated!")
    assert pipeline.progress.percentage == 100
    assert pipeline.active_segment is None
    assert pipeline.error == ""


@pytest.mark.asyncio
async def test_second_generation_waits_for_first():
    pipeline, _, generator = _pipeline(_segments(2))
    started = []
    release_first = asyncio.Event()
    original = generator.generate

    async def gated(segment, reference_image=None):
        started.append(segment.topic_summary)
        if segment.topic_summary == "Scene 0":
            await release_first.wait()
        return await original(segment, reference_image)

    generator.generate = gated
    task = asyncio.create_task(pipeline.run())
    for _ in range(10):
        await asyncio.sleep(0)

    assert started == ["Scene 0"]
    assert pipeline.active_segment.topic_summary == "Scene 0"
    release_first.set()
    assert await task is PipelineState.COMPLETE
    assert started == ["Scene 0", "Scene 1"]


@pytest.mark.asyncio
async def test_progress_sequence():
    pipeline, _, _ = _pipeline(_segments(2))
    seen = []
    pipeline.subscribe(seen.append)

    await pipeline.run()

    assert [(p.stage, p.current, p.total) for p in seen] == [
        ("Starting", 0, 1),
        ("Analyzing audio", 0, 1),
        ("Analyzing audio", 1, 1),
        ("Generating clips", 0, 2),
        ("Generating clips", 0, 2),
        ("Generating clips", 1, 2),
        ("Finished", 2, 2),
    ]
    assert seen[4].message == "Generating clip 1/2: Scene 0"
    assert seen[5].message == "Generating clip 2/2: Scene 1"


@pytest.mark.asyncio
async def test_empty_segment_list_completes():
    pipeline, _, generator = _pipeline([])
    assert await pipeline.run() is PipelineState.COMPLETE
    assert generator.calls == []
    assert pipeline.clips == ()


@pytest.mark.asyncio
@pytest.mark.parametrize("failing_index", [0, 1, 3])
async def test_failure_keeps_prefix_of_clips(failing_index):
    pipeline, _, generator = _pipeline(_segments(4), fail_at=failing_index)

    state = await pipeline.run()

    assert state is PipelineState.ERROR
    assert len(pipeline.clips) == failing_index
    assert [c.segment for c in pipeline.clips] == generator.calls[:failing_index]
    assert len(generator.calls) == failing_index + 1
    assert pipeline.error == "Video generation timed out after 10 minutes."
    assert pipeline.progress.stage == "Error"
    assert pipeline.progress.message == pipeline.error
    # kept clips stay resolvable for inspection
    assert all(c.blob_url in pipeline.blobs for c in pipeline.clips)


@pytest.mark.asyncio
async def test_segmentation_failure_goes_to_error():
    pipeline, _, generator = _pipeline(seg_error=SegmentationFailed("bad json"))

    assert await pipeline.run() is PipelineState.ERROR
    assert pipeline.error == "Failed to analyze audio: bad json"
    assert generator.calls == []
    assert pipeline.clips == ()


@pytest.mark.asyncio
async def test_character_photo_is_passed_by_id():
    pipeline, _, generator = _pipeline(_segments(2))
    hero = next(iter(pipeline.characters))
    photo = ReferenceImage(data=b"png", mime_type="image/png")
    pipeline.characters.set_photo(hero.id, photo)
    pipeline.segmenter.segments = [
        seg.model_copy(update={"character_id": hero.id}) if i == 0 else seg
        for i, seg in enumerate(pipeline.segmenter.segments)
    ]

    await pipeline.run()

    assert generator.images == [photo, None]


@pytest.mark.asyncio
async def test_unknown_character_id_means_no_photo():
    pipeline, _, generator = _pipeline(_segments(1))
    await pipeline.run()
    assert generator.images == [None]


@pytest.mark.asyncio
async def test_run_reset_run_releases_previous_clips():
    pipeline, segmenter, _ = _pipeline(_segments(2))
    await pipeline.run()
    first = [c.blob_url for c in pipeline.clips]

    pipeline.reset()
    pipeline.set_audio(AudioAsset(data=b"ID3", mime_type="audio/mpeg"))
    assert await pipeline.run() is PipelineState.COMPLETE

    assert all(url not in pipeline.blobs for url in first)
    assert len(pipeline.clips) == 2
    assert segmenter.calls == 2


@pytest.mark.asyncio
async def test_run_after_complete_needs_reset():
    pipeline, segmenter, _ = _pipeline(_segments(2))
    await pipeline.run()
    kept = [c.blob_url for c in pipeline.clips]

    assert await pipeline.run() is PipelineState.COMPLETE
    assert segmenter.calls == 1
    assert [c.blob_url for c in pipeline.clips] == kept
    assert all(url in pipeline.blobs for url in kept)


@pytest.mark.asyncio
async def test_run_after_error_keeps_clips_for_inspection():
    pipeline, segmenter, generator = _pipeline(_segments(3), fail_at=1)
    assert await pipeline.run() is PipelineState.ERROR
    kept = [c.blob_url for c in pipeline.clips]
    assert len(kept) == 1

    assert await pipeline.run() is PipelineState.ERROR

    assert segmenter.calls == 1
    assert len(generator.calls) == 2
    assert [c.blob_url for c in pipeline.clips] == kept
    assert all(url in pipeline.blobs for url in kept)
    assert pipeline.error == "Video generation timed out after 10 minutes."
    assert pipeline.progress.stage == "Error"


@pytest.mark.asyncio
@pytest.mark.parametrize("fail_at", [None, 1])
async def test_reset_returns_to_blank_idle(fail_at):
    pipeline, _, _ = _pipeline(_segments(3), fail_at=fail_at)
    pipeline.set_context("a story")
    hero = next(iter(pipeline.characters))
    pipeline.characters.set_name(hero.id, "Mara")
    pipeline.characters.set_photo(hero.id, ReferenceImage(data=b"png", mime_type="image/png"))
    pipeline.characters.add()
    await pipeline.run()
    assert pipeline.state in (PipelineState.COMPLETE, PipelineState.ERROR)

    pipeline.reset()

    assert pipeline.state is PipelineState.IDLE
    assert pipeline.clips == ()
    assert pipeline.audio is None and pipeline.audio_url is None
    assert pipeline.context == ""
    assert pipeline.error == ""
    characters = list(pipeline.characters)
    assert len(characters) == 1
    assert (characters[0].name, characters[0].description, characters[0].photo) == ("", "", None)
    assert characters[0].id != hero.id
    # every clip, audio preview and photo preview handle is released
    assert len(pipeline.blobs) == 0


@pytest.mark.asyncio
async def test_reset_during_generation_discards_late_result():
    pipeline, _, generator = _pipeline(_segments(2))
    gate = asyncio.Event()
    original = generator.generate

    async def slow(segment, reference_image=None):
        await gate.wait()
        return await original(segment, reference_image)

    generator.generate = slow
    task = asyncio.create_task(pipeline.run())
    for _ in range(10):
        await asyncio.sleep(0)
    assert pipeline.state is PipelineState.PROCESSING

    pipeline.reset()
    gate.set()
    await task

    assert pipeline.state is PipelineState.IDLE
    assert pipeline.clips == ()
    assert pipeline.progress.stage == "Starting"
    assert len(generator.calls) == 1
    assert len(pipeline.blobs) == 0


@pytest.mark.asyncio
async def test_reset_during_segmentation_ignores_late_failure():
    pipeline, segmenter, _ = _pipeline(seg_error=SegmentationFailed("late"))
    task = asyncio.create_task(pipeline.run())
    await asyncio.sleep(0)

    pipeline.reset()
    await task

    assert pipeline.state is PipelineState.IDLE
    assert pipeline.error == ""
    assert pipeline.progress.stage == "Starting"


@pytest.mark.asyncio
async def test_run_while_processing_is_ignored():
    pipeline, segmenter, _ = _pipeline(_segments(1))
    first = asyncio.create_task(pipeline.run())
    await asyncio.sleep(0)

    assert await pipeline.run() is PipelineState.PROCESSING
    assert await first is PipelineState.COMPLETE
    assert segmenter.calls == 1


def test_set_audio_replaces_preview_handle():
    pipeline, _, _ = _pipeline()
    old_url = pipeline.audio_url
    new_url = pipeline.set_audio(AudioAsset(data=b"RIFF", mime_type="audio/wav"))
    assert old_url not in pipeline.blobs
    assert pipeline.blobs.resolve(new_url).mime_type == "audio/wav"
    pipeline.clear_audio()
    assert pipeline.audio is None
    assert len(pipeline.blobs) == 0
