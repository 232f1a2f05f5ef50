"""Core data contracts for the NovelAI image client.

Request dataclasses carry their wire names as field metadata (``wire``); the
generic converter in :mod:`nekoai_image_api.core.wire` reads that table, so
the key casing the service expects is declared next to each field. A field
whose ``wire`` metadata is ``None`` never leaves the process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, TypeVar, Union


class Unset:
    """Marker for "not supplied"; distinct from ``None`` which is sent as null."""

    _instance: Optional["Unset"] = None

    def __new__(cls) -> "Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False

    def __copy__(self) -> "Unset":
        return self

    def __deepcopy__(self, memo: Dict[int, Any]) -> "Unset":
        return self

    def __reduce__(self):
        return (Unset, ())


UNSET = Unset()

T = TypeVar("T")
Maybe = Union[T, Unset]

ImageInput = Union[str, Path, bytes, bytearray, Any]


def is_set(value: Any) -> bool:
    return value is not UNSET


def wire(name: Optional[str]) -> Dict[str, Any]:
    return {"wire": name}


class Model(str, Enum):
    V3 = "nai-diffusion-3"
    V3_INP = "nai-diffusion-3-inpainting"
    FURRY = "nai-diffusion-furry-3"
    FURRY_INP = "nai-diffusion-furry-3-inpainting"
    V4 = "nai-diffusion-4-full"
    V4_INP = "nai-diffusion-4-full-inpainting"
    V4_CUR = "nai-diffusion-4-curated-preview"
    V4_CUR_INP = "nai-diffusion-4-curated-inpainting"
    V4_5_CUR = "nai-diffusion-4-5-curated"
    V4_5_CUR_INP = "nai-diffusion-4-5-curated-inpainting"
    V4_5 = "nai-diffusion-4-5-full"
    V4_5_INP = "nai-diffusion-4-5-full-inpainting"


class Action(str, Enum):
    GENERATE = "generate"
    INPAINT = "infill"
    IMG2IMG = "img2img"


class Sampler(str, Enum):
    EULER = "k_euler"
    EULER_ANC = "k_euler_ancestral"
    DPM2S_ANC = "k_dpmpp_2s_ancestral"
    DPM2M = "k_dpmpp_2m"
    DPM2M_SDE = "k_dpmpp_2m_sde"
    DPMSDE = "k_dpmpp_sde"
    DDIM = "ddim_v3"


class Noise(str, Enum):
    NATIVE = "native"
    KARRAS = "karras"
    EXPONENTIAL = "exponential"
    POLYEXPONENTIAL = "polyexponential"


class Resolution(str, Enum):
    SMALL_PORTRAIT = "small_portrait"
    SMALL_LANDSCAPE = "small_landscape"
    SMALL_SQUARE = "small_square"
    NORMAL_PORTRAIT = "normal_portrait"
    NORMAL_LANDSCAPE = "normal_landscape"
    NORMAL_SQUARE = "normal_square"
    LARGE_PORTRAIT = "large_portrait"
    LARGE_LANDSCAPE = "large_landscape"
    LARGE_SQUARE = "large_square"
    WALLPAPER_PORTRAIT = "wallpaper_portrait"
    WALLPAPER_LANDSCAPE = "wallpaper_landscape"


class Controlnet(str, Enum):
    PALETTESWAP = "hed"
    FORMLOCK = "midas"
    SCRIBBLER = "fake_scribble"
    BUILDINGCONTROL = "mlsd"
    LANDSCAPER = "uniformer"


class DirectorTool(str, Enum):
    LINEART = "lineart"
    SKETCH = "sketch"
    BACKGROUND_REMOVAL = "bg-removal"
    EMOTION = "emotion"
    DECLUTTER = "declutter"
    COLORIZE = "colorize"


class Emotion(str, Enum):
    NEUTRAL = "neutral"
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    SCARED = "scared"
    SURPRISED = "surprised"
    TIRED = "tired"
    EXCITED = "excited"
    NERVOUS = "nervous"
    THINKING = "thinking"
    CONFUSED = "confused"
    SHY = "shy"
    DISGUSTED = "disgusted"
    SMUG = "smug"
    BORED = "bored"
    LAUGHING = "laughing"
    IRRITATED = "irritated"
    AROUSED = "aroused"
    EMBARRASSED = "embarrassed"
    WORRIED = "worried"
    LOVE = "love"
    DETERMINED = "determined"
    HURT = "hurt"
    PLAYFUL = "playful"


class EmotionLevel(int, Enum):
    NORMAL = 0
    SLIGHTLY_WEAK = 1
    WEAK = 2
    EVEN_WEAKER = 3
    VERY_WEAK = 4
    WEAKEST = 5


class EventType(str, Enum):
    INTERMEDIATE = "intermediate"
    FINAL = "final"


@dataclass(frozen=True)
class HostInstance:
    url: str
    accept: str
    name: str


@dataclass
class Center:
    x: float = 0.5
    y: float = 0.5


@dataclass
class CharacterPrompt:
    prompt: str = ""
    uc: str = ""
    center: Maybe[Center] = UNSET
    enabled: Maybe[bool] = UNSET


@dataclass
class CharacterCaption:
    char_caption: str
    centers: List[Center] = field(default_factory=list)


@dataclass
class V4Caption:
    base_caption: str
    char_captions: List[CharacterCaption] = field(default_factory=list)


@dataclass
class V4Prompt:
    caption: V4Caption
    use_coords: bool = False
    use_order: bool = True


@dataclass
class V4NegativePrompt:
    caption: V4Caption
    legacy_uc: bool = False


@dataclass
class Img2ImgSettings:
    strength: float
    color_correct: bool = True


@dataclass
class GenerationRequest:
    """Loosely specified generation parameters; normalized into a full request.

    Fields left as ``UNSET`` are filled by the normalizer or omitted from the
    wire payload. ``None`` is a deliberate null and is sent as such.
    """

    prompt: str = ""
    model: Maybe[Union[Model, str]] = field(default=UNSET, metadata=wire(None))
    action: Maybe[Union[Action, str]] = field(default=UNSET, metadata=wire(None))
    res_preset: Maybe[Union[Resolution, str]] = field(default=UNSET, metadata=wire(None))
    size: Maybe[str] = field(default=UNSET, metadata=wire(None))

    # prompt settings
    negative_prompt: Maybe[str] = UNSET
    quality_toggle: Maybe[bool] = field(default=UNSET, metadata=wire("qualityToggle"))
    uc_preset: Maybe[int] = field(default=UNSET, metadata=wire("ucPreset"))

    # image settings
    width: Maybe[int] = UNSET
    height: Maybe[int] = UNSET
    n_samples: Maybe[int] = UNSET

    # sampling
    steps: Maybe[int] = UNSET
    scale: Maybe[float] = UNSET
    dynamic_thresholding: Maybe[bool] = UNSET
    seed: Maybe[int] = UNSET
    extra_noise_seed: Maybe[int] = UNSET
    sampler: Maybe[Union[Sampler, str]] = UNSET
    sm: Maybe[bool] = UNSET
    sm_dyn: Maybe[bool] = UNSET
    cfg_rescale: Maybe[float] = UNSET
    noise_schedule: Maybe[Union[Noise, str]] = UNSET

    # img2img / inpaint
    image: Maybe[str] = UNSET
    mask: Maybe[str] = UNSET
    strength: Maybe[float] = UNSET
    noise: Maybe[float] = UNSET
    add_original_image: Maybe[bool] = UNSET
    controlnet_strength: Maybe[float] = UNSET
    controlnet_condition: Maybe[str] = UNSET
    controlnet_model: Maybe[Union[Controlnet, str]] = UNSET
    inpaint_img2img_strength: Maybe[float] = field(default=UNSET, metadata=wire("inpaintImg2ImgStrength"))
    img2img: Maybe[Img2ImgSettings] = UNSET

    # vibe transfer
    reference_image_multiple: Maybe[List[str]] = UNSET
    reference_information_extracted_multiple: Maybe[List[float]] = UNSET
    reference_strength_multiple: Maybe[List[float]] = UNSET
    normalize_reference_strength_multiple: Maybe[bool] = UNSET

    # director references
    director_reference_images: Maybe[List[str]] = UNSET
    director_reference_descriptions: Maybe[List[V4NegativePrompt]] = UNSET
    director_reference_information_extracted: Maybe[List[float]] = UNSET
    director_reference_strength_values: Maybe[List[float]] = UNSET

    # V4-generation settings
    params_version: Maybe[int] = UNSET
    auto_smea: Maybe[bool] = field(default=UNSET, metadata=wire("autoSmea"))
    character_prompts: Maybe[List[CharacterPrompt]] = field(default=UNSET, metadata=wire("characterPrompts"))
    v4_prompt: Maybe[V4Prompt] = UNSET
    v4_negative_prompt: Maybe[V4NegativePrompt] = UNSET
    skip_cfg_above_sigma: Maybe[Optional[float]] = UNSET
    use_coords: Maybe[bool] = UNSET
    legacy_uc: Maybe[bool] = UNSET
    deliberate_euler_ancestral_bug: Maybe[bool] = UNSET
    prefer_brownian: Maybe[bool] = UNSET

    # misc
    legacy: Maybe[bool] = UNSET
    legacy_v3_extend: Maybe[bool] = UNSET
    stream: Maybe[str] = UNSET

    warnings: List[str] = field(default_factory=list, compare=False, metadata=wire(None))


# The normalizer returns the same type with every consumed field populated.
NormalizedRequest = GenerationRequest


@dataclass
class ParsedImage:
    width: int
    height: int
    base64: str


@dataclass
class ResultImage:
    filename: str
    data: bytes
    request: Optional[GenerationRequest] = None
    path: Optional[Path] = None

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1] if "." in self.filename else ""

    def save(self, target: Union[str, Path, None] = None, store=None) -> Path:
        """Write the image; ``target`` may be a directory or a full file path."""
        from .imaging import LocalFileStore
        from .utils import ensure_out_dir

        store = store or LocalFileStore()
        if target is None:
            path = ensure_out_dir(None) / self.filename
        else:
            path = Path(target)
            if path.suffix == "" or (path.exists() and path.is_dir()):
                path = path / self.filename
        self.path = store.write(path, self.data)
        return self.path


@dataclass
class StreamEvent:
    event_type: EventType
    samp_ix: int
    step_ix: int
    gen_id: str
    sigma: float
    image: ResultImage

    @property
    def is_final(self) -> bool:
        return self.event_type == EventType.FINAL

    @property
    def extension(self) -> str:
        return self.image.extension


@dataclass
class DirectorRequest:
    req_type: Union[DirectorTool, str]
    width: int
    height: int
    image: str
    prompt: Maybe[str] = UNSET
    defry: Maybe[int] = UNSET


@dataclass
class MetadataEntry:
    keyword: str
    text: str


@dataclass
class ImageMetadata:
    type: str
    entries: Sequence[MetadataEntry] = ()
    raw: Any = None


@dataclass
class ImageSummary:
    width: int
    height: int
    has_metadata: bool
    metadata_type: str
    generation_tool: Optional[str] = None
    positive_prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    raw_entries: Sequence[MetadataEntry] = ()
