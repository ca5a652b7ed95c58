"""
Timeline compiler: timeline document -> ffmpeg argument list.

The compiler is a pure function of its inputs. It performs no I/O, never
raises for well-typed input, and produces the same arguments for the same
document. The graph is built in passes on top of a solid-color base surface:

1. Register one engine input per distinct media id (first-seen order)
2. Video clips: fit to canvas, trim, shift onto the absolute timeline, overlay
3. Images: scale, overlay at a position preset
4. Text: drawtext
5. Audio: trim, delay and mix every audible source

Later clips in iteration order are drawn on top of earlier ones.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from export_worker.render.effects import effect_filters, position_expressions
from export_worker.render.graph import (
    Filter,
    FilterGraph,
    FilterNode,
    escape_drawtext,
    format_seconds,
    hex_to_ffmpeg_color,
)
from export_worker.schemas.timeline import (
    MediaAsset,
    MediaElement,
    ProjectSettings,
    TextElement,
    TimelineDocument,
    Track,
    calculate_timeline_duration,
)

logger = logging.getLogger(__name__)

DEFAULT_FONT_FILE = "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"


@dataclass
class CompilerOptions:
    """Rendering knobs that are not part of the timeline itself."""

    font_file: str = DEFAULT_FONT_FILE
    default_text_position: str = "center"
    default_image_position: str = "center"
    video_preset: str = "veryfast"
    audio_bitrate: str = "192k"
    text_box_border: int = 5
    # Floor for the base surface and synthesized silence on empty timelines
    min_duration: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> "CompilerOptions":
        return cls(
            font_file=settings.font_file,
            default_text_position=settings.default_text_position,
            default_image_position=settings.default_image_position,
            video_preset=settings.video_preset,
            audio_bitrate=settings.audio_bitrate,
        )


class ElementStatus(Enum):
    RENDERED = "rendered"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ElementOutcome:
    element_id: str
    track_id: str
    status: ElementStatus
    reason: str | None = None


@dataclass
class InputSpec:
    locator: str
    options: list[str] = field(default_factory=list)

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.locator]


@dataclass
class GraphTrace:
    inputs: list[str]
    filters: list[str]
    final_video_label: str
    final_audio_label: str | None


@dataclass
class CompileResult:
    arguments: list[str]
    trace: GraphTrace
    outcomes: list[ElementOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> list[ElementOutcome]:
        return [o for o in self.outcomes if o.status is ElementStatus.SKIPPED]


@dataclass
class _Clip:
    element: MediaElement
    track: Track
    asset: MediaAsset
    input_index: int


class TimelineCompiler:
    BASE_LABEL = "baseV"
    AMIX_DROPOUT_TRANSITION = 2
    SILENCE_SOURCE = "anullsrc=channel_layout=stereo:sample_rate=44100"

    def __init__(
        self,
        project: ProjectSettings,
        tracks: list[Track],
        media_assets: Mapping[str, MediaAsset],
        options: CompilerOptions | None = None,
    ):
        self.project = project
        self.tracks = tracks
        self.media_assets = media_assets
        self.options = options or CompilerOptions()

        self.width = project.canvas_size.width
        self.height = project.canvas_size.height
        self.fps = project.fps
        self.background = hex_to_ffmpeg_color(project.background_color)
        self.duration = max(calculate_timeline_duration(tracks), self.options.min_duration)

        self.graph = FilterGraph()
        self._inputs: list[InputSpec] = []
        self._input_index: dict[str, int] = {}
        self._clips: list[_Clip] = []
        self._texts: list[TextElement] = []
        self._outcomes: list[ElementOutcome] = []

    def compile(self) -> CompileResult:
        surface = self._add_base()
        self._collect()
        surface = self._video_pass(surface)
        surface = self._image_pass(surface)
        surface = self._text_pass(surface)
        audio = self._audio_pass()
        arguments = self._assemble(surface, audio)

        trace = GraphTrace(
            inputs=[" ".join(spec.to_args()) for spec in self._inputs],
            filters=self.graph.rendered_nodes(),
            final_video_label=surface,
            final_audio_label=audio,
        )
        logger.debug(f"[COMPILE] inputs={len(self._inputs)} filters={len(trace.filters)} skipped={len(self._skipped())}")
        return CompileResult(arguments=arguments, trace=trace, outcomes=list(self._outcomes))

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def _add_base(self) -> str:
        source = (
            f"color=c={self.background}:s={self.width}x{self.height}"
            f":r={self.fps}:d={format_seconds(self.duration)}"
        )
        self._inputs.append(InputSpec(locator=source, options=["-f", "lavfi"]))
        return self.graph.add(
            ["0:v"],
            [
                Filter.of("format", "yuv420p"),
                Filter.of("setsar", 1),
                Filter.of("scale", self.width, self.height),
                Filter.of("fps", self.fps),
            ],
            self.BASE_LABEL,
        )

    def _register_input(self, media_id: str, asset: MediaAsset) -> int:
        if media_id not in self._input_index:
            options = ["-loop", "1"] if asset.type == "image" else []
            self._input_index[media_id] = len(self._inputs)
            self._inputs.append(InputSpec(locator=asset.url or "", options=options))
        return self._input_index[media_id]

    def _collect(self) -> None:
        for track in self.tracks:
            for element in track.sorted_elements():
                if isinstance(element, TextElement):
                    self._texts.append(element)
                    self._rendered(element, track)
                    continue

                asset = self.media_assets.get(element.media_id)
                if asset is None:
                    self._skip(element, track, "unresolved_media")
                    continue
                if not asset.url:
                    self._skip(element, track, "missing_locator")
                    continue

                index = self._register_input(element.media_id, asset)
                self._clips.append(_Clip(element=element, track=track, asset=asset, input_index=index))
                self._rendered(element, track)

    def _rendered(self, element: MediaElement | TextElement, track: Track) -> None:
        self._outcomes.append(ElementOutcome(element.id, track.id, ElementStatus.RENDERED))

    def _skip(self, element: MediaElement, track: Track, reason: str) -> None:
        logger.info(f"[COMPILE] Skipping element {element.id} (media_id={element.media_id}): {reason}")
        self._outcomes.append(ElementOutcome(element.id, track.id, ElementStatus.SKIPPED, reason))

    def _skipped(self) -> list[ElementOutcome]:
        return [o for o in self._outcomes if o.status is ElementStatus.SKIPPED]

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    def _enable(self, element: MediaElement | TextElement) -> str:
        return f"between(t,{format_seconds(element.start_time)},{format_seconds(element.end_time)})"

    def _placed(self, element: MediaElement) -> list[Filter]:
        """Shift a trimmed stream so its first frame lands at ``start_time``."""
        return [Filter.of("setpts", f"PTS-STARTPTS+{format_seconds(element.start_time)}/TB")]

    def _fit_to_canvas(self, source: str) -> tuple[str, list[Filter]]:
        """Return (stream label, leading filters) that fit ``source`` to the canvas."""
        w, h = self.width, self.height
        if self.project.background_type != "blur":
            return source, [
                Filter.of("scale", w, h, force_original_aspect_ratio="decrease"),
                Filter.of("pad", w, h, "(ow-iw)/2", "(oh-ih)/2", color=self.background),
            ]

        back_in, front_in = self.graph.label("v"), self.graph.label("v")
        self.graph.add_node(FilterNode([source], [Filter.of("split", 2)], [back_in, front_in]))
        back = self.graph.add(
            [back_in],
            [
                Filter.of("scale", w, h, force_original_aspect_ratio="increase"),
                Filter.of("crop", w, h),
                Filter.of("boxblur", self.project.blur_intensity),
            ],
            self.graph.label("v"),
        )
        front = self.graph.add(
            [front_in],
            [Filter.of("scale", w, h, force_original_aspect_ratio="decrease")],
            self.graph.label("v"),
        )
        fitted = self.graph.add(
            [back, front],
            [Filter.of("overlay", "(W-w)/2", "(H-h)/2")],
            self.graph.label("v"),
        )
        return fitted, []

    def _video_pass(self, surface: str) -> str:
        for clip in self._clips:
            if clip.asset.type != "video":
                continue
            element = clip.element
            source, fit = self._fit_to_canvas(f"{clip.input_index}:v")
            chain = [
                *fit,
                Filter.of("fps", self.fps),
                Filter.of("format", "yuv420p"),
                Filter.of("setsar", 1),
                *effect_filters(element.effects),
                Filter.of(
                    "trim",
                    start=format_seconds(element.trim_start),
                    end=format_seconds(element.trim_start + element.duration),
                ),
                *self._placed(element),
            ]
            prepared = self.graph.add([source], chain, self.graph.label("v"))
            surface = self.graph.add(
                [surface, prepared],
                [Filter.of("overlay", eof_action="pass", enable=self._enable(element))],
                self.graph.label("v"),
            )
        return surface

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def _image_pass(self, surface: str) -> str:
        for clip in self._clips:
            if clip.asset.type != "image":
                continue
            element = clip.element
            chain = [
                Filter.of(
                    "scale",
                    clip.asset.width or self.width,
                    clip.asset.height or -1,
                    force_original_aspect_ratio="decrease",
                ),
                Filter.of("format", "rgba"),
                *effect_filters(element.effects),
                Filter.of("trim", duration=format_seconds(element.duration)),
                *self._placed(element),
            ]
            scaled = self.graph.add([f"{clip.input_index}:v"], chain, self.graph.label("v"))
            x, y = position_expressions(element.position or self.options.default_image_position)
            surface = self.graph.add(
                [surface, scaled],
                [Filter.of("overlay", x=x, y=y, eof_action="pass", enable=self._enable(element))],
                self.graph.label("v"),
            )
        return surface

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def _text_position(self, element: TextElement) -> tuple[str, str]:
        x, y = position_expressions(
            element.position or self.options.default_text_position,
            item_width="tw",
            item_height="th",
        )
        if element.x is not None:
            x = f"(W-tw)/2{element.x:+g}"
        if element.y is not None:
            y = f"(H-th)/2{element.y:+g}"
        return x, y

    def _text_pass(self, surface: str) -> str:
        for element in self._texts:
            params: dict[str, object] = {
                "text": escape_drawtext(element.content),
                "fontfile": self.options.font_file,
                "fontsize": element.font_size,
                "fontcolor": hex_to_ffmpeg_color(element.color),
            }
            if element.has_background:
                params["box"] = 1
                params["boxcolor"] = hex_to_ffmpeg_color(element.background_color)
                params["boxborderw"] = self.options.text_box_border
            params["x"], params["y"] = self._text_position(element)
            params["enable"] = self._enable(element)
            surface = self.graph.add([surface], [Filter.of("drawtext", **params)], self.graph.label("v"))
        return surface

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def _is_audible(self, clip: _Clip) -> bool:
        if clip.asset.type == "image":
            return False
        if clip.track.type == "audio" or clip.asset.type == "audio":
            return True
        return not clip.element.muted

    def _audio_pass(self) -> str | None:
        sources: list[str] = []
        for clip in self._clips:
            if not self._is_audible(clip):
                continue
            element = clip.element
            delay_ms = round(element.start_time * 1000)
            label = self.graph.add(
                [f"{clip.input_index}:a"],
                [
                    Filter.of(
                        "atrim",
                        start=format_seconds(element.trim_start),
                        end=format_seconds(element.trim_start + element.duration),
                    ),
                    Filter.of("asetpts", "PTS-STARTPTS"),
                    Filter.of("volume", element.volume),
                    Filter.of("adelay", f"{delay_ms}|{delay_ms}"),
                ],
                self.graph.label("a"),
            )
            sources.append(label)

        if not sources:
            return None
        if len(sources) == 1:
            return sources[0]
        return self.graph.add(
            sources,
            [
                Filter.of(
                    "amix",
                    inputs=len(sources),
                    normalize=1,
                    dropout_transition=self.AMIX_DROPOUT_TRANSITION,
                )
            ],
            self.graph.label("a"),
        )

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _assemble(self, video: str, audio: str | None) -> list[str]:
        audio_map = [f"[{audio}]"]
        if audio is None:
            # Silent track so players that expect audio still work
            silence_index = len(self._inputs)
            self._inputs.append(
                InputSpec(
                    locator=self.SILENCE_SOURCE,
                    options=["-f", "lavfi", "-t", format_seconds(self.duration)],
                )
            )
            audio_map = [f"{silence_index}:a"]

        args: list[str] = []
        for spec in self._inputs:
            args.extend(spec.to_args())
        args.extend(["-filter_complex", self.graph.serialize()])
        args.extend(["-map", f"[{video}]", "-map", *audio_map])
        if audio is None:
            args.append("-shortest")
        args.extend([
            "-c:v", "libx264",
            "-preset", self.options.video_preset,
            "-profile:v", "high",
            "-pix_fmt", "yuv420p",
            "-r", str(self.fps),
            "-c:a", "aac",
            "-b:a", self.options.audio_bitrate,
            "-movflags", "+faststart",
        ])
        return args


def compile_timeline(
    project: ProjectSettings,
    tracks: list[Track],
    media_assets: Mapping[str, MediaAsset],
    options: CompilerOptions | None = None,
) -> CompileResult:
    """Compile a timeline into ffmpeg arguments (everything but the output path)."""
    return TimelineCompiler(project, tracks, media_assets, options).compile()


def compile_document(document: TimelineDocument, options: CompilerOptions | None = None) -> CompileResult:
    return compile_timeline(document.project, document.tracks, document.media_items, options)
