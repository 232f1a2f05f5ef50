"""Public API for the NovelAI image client."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Union

from nekoai_image_api.core.assembler import assemble_director, assemble_response
from nekoai_image_api.core.cache import VibeCacheKey, VibeTokenCache, content_hash
from nekoai_image_api.core.capabilities import get_profile
from nekoai_image_api.core.config import ClientOptions
from nekoai_image_api.core.contracts import (
    UNSET,
    Action,
    DirectorRequest,
    DirectorTool,
    Emotion,
    EmotionLevel,
    GenerationRequest,
    HostInstance,
    ImageInput,
    NormalizedRequest,
    ResultImage,
    StreamEvent,
    is_set,
)
from nekoai_image_api.core.cost import estimate_cost
from nekoai_image_api.core.errors import TransportError
from nekoai_image_api.core.imaging import FileStore, ImageCodec, LocalFileStore, PillowImageCodec
from nekoai_image_api.core.normalizer import normalize_request
from nekoai_image_api.core.receipts import build_receipt, sanitize_payload, write_receipt
from nekoai_image_api.core.retry import with_retry
from nekoai_image_api.core.router import (
    ENDPOINT_DIRECTOR,
    ENDPOINT_ENCODE_VIBE,
    ENDPOINT_IMAGE,
    ENDPOINT_IMAGE_STREAM,
    HEADERS,
    HOSTS,
    resolve_host,
)
from nekoai_image_api.core.streaming import BinaryStreamParser, EventStreamParser, parser_for
from nekoai_image_api.core.utils import ensure_out_dir, prep_headers, to_base64
from nekoai_image_api.core.wire import to_wire_object, to_wire_payload
from nekoai_image_api.transport import Transport, TransportResponse, get_transport


logger = logging.getLogger(__name__)

HostLike = Union[HostInstance, str, None]
_ERROR_CONTENT_TYPES = ("application/json", "text/html", "text/plain")
_IMAGE_FIELDS = ("image", "mask", "controlnet_condition")
_IMAGE_LIST_FIELDS = ("reference_image_multiple", "director_reference_images")


def _check_cancel(cancel) -> None:
    if cancel is not None and cancel.is_set():
        raise TransportError("cancelled", cancelled=True)


def _check_content_type(response: TransportResponse, url: str) -> None:
    content_type = response.content_type.lower()
    if any(kind in content_type for kind in _ERROR_CONTENT_TYPES):
        detail = response.read_all()[:200].decode("utf-8", errors="replace")
        raise TransportError(
            f"Unexpected content type '{content_type}' from {url}: {detail}",
            status=response.status_code,
        )


def _looks_like_base64(value: str) -> bool:
    if len(value) < 64 or len(value) % 4:
        return False
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def _is_file(value: str) -> bool:
    try:
        return Path(value).expanduser().is_file()
    except (OSError, ValueError):
        return False


class NovelAIClient:
    """Normalizes requests, sends them and decodes the responses.

    Collaborators (transport, image codec, vibe cache, file store) may be
    injected; by default the client uses ``requests``, Pillow, an in-process
    cache and the local filesystem.
    """

    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        *,
        token: Optional[str] = None,
        transport: Optional[Transport] = None,
        codec: Optional[ImageCodec] = None,
        cache: Optional[VibeTokenCache] = None,
        store: Optional[FileStore] = None,
        verbose: bool = False,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if options is None:
            options = ClientOptions(token=token) if token else ClientOptions.from_env()
        elif token:
            options = replace(options, token=token)
        self.options = options
        self.transport = transport or get_transport("requests")
        self.codec = codec or PillowImageCodec()
        self.cache = cache if cache is not None else VibeTokenCache(options.vibe_cache_size)
        self.store = store or LocalFileStore()
        self.verbose = verbose
        self._sleep = sleep

    # -- plumbing -----------------------------------------------------------

    def _host(self, host: HostLike) -> HostInstance:
        return resolve_host(host if host is not None else self.options.host)

    def _headers(self, accept: str):
        base = dict(HEADERS)
        base["User-Agent"] = self.options.user_agent
        return prep_headers(base, self.options.token, accept)

    def _retry(self, fn):
        if self._sleep is None:
            return with_retry(fn, self.options.retry)
        return with_retry(fn, self.options.retry, sleep=self._sleep)

    def _post(self, url: str, payload, accept: str, *, stream: bool = False) -> TransportResponse:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("POST %s %s", url, json.dumps(sanitize_payload(payload)))
        return self.transport.post(url, payload, self._headers(accept), timeout=self.options.timeout, stream=stream)

    def _image_to_base64(self, value: Any) -> Any:
        if value is None or value is UNSET:
            return value
        if isinstance(value, str):
            if value.startswith("data:") or (not _looks_like_base64(value) and _is_file(value)):
                return to_base64(self.codec.load(value))
            return value
        return to_base64(self.codec.load(value))

    def _prepare_inputs(self, request: GenerationRequest) -> GenerationRequest:
        changes = {}
        for name in _IMAGE_FIELDS:
            value = getattr(request, name)
            if is_set(value) and value is not None:
                changes[name] = self._image_to_base64(value)
        for name in _IMAGE_LIST_FIELDS:
            value = getattr(request, name)
            if is_set(value) and value:
                changes[name] = [self._image_to_base64(item) for item in value]
        return replace(request, **changes) if changes else request

    # -- requests -----------------------------------------------------------

    def prepare(self, request: GenerationRequest) -> NormalizedRequest:
        """Load image inputs and normalize; no network access."""
        return normalize_request(self._prepare_inputs(request))

    def estimate_cost(self, request: GenerationRequest, discount: bool = False) -> int:
        return estimate_cost(self.prepare(request), discount)

    def _log_cost(self, normalized: NormalizedRequest, discount: bool) -> int:
        cost = estimate_cost(normalized, discount)
        if self.verbose:
            logger.info("Generating image... estimated Anlas cost: %d", cost)
        return cost

    def _vibe_token(self, image_b64: str, information_extracted: float, model: str) -> str:
        key = VibeCacheKey(content_hash(base64.b64decode(image_b64)), float(information_extracted), model)
        web = HOSTS["web"]
        url = f"{web.url}{ENDPOINT_ENCODE_VIBE}"

        def fetch() -> str:
            logger.debug("Encoding vibe %s", key)

            def attempt() -> str:
                response = self._post(
                    url,
                    {"image": image_b64, "information_extracted": information_extracted, "model": model},
                    web.accept,
                )
                token = response.read_all().decode("utf-8", errors="replace").strip()
                if not token:
                    raise TransportError("No vibe token data received from API", status=response.status_code)
                return token

            return self._retry(attempt)

        return self.cache.get_or_create(key, fetch)

    def encode_vibe(self, normalized: NormalizedRequest) -> NormalizedRequest:
        """Swap reference images for vibe tokens on models that take them."""
        images = normalized.reference_image_multiple
        if not is_set(images) or not images:
            return normalized
        if not get_profile(normalized.model).supports_vibe_encoding:
            return normalized
        extracted = normalized.reference_information_extracted_multiple
        extracted = list(extracted) if is_set(extracted) and extracted else []
        model = normalized.model.value
        tokens = [
            self._vibe_token(image, extracted[index] if index < len(extracted) else 1.0, model)
            for index, image in enumerate(images)
        ]
        normalized.reference_image_multiple = tokens
        normalized.reference_information_extracted_multiple = UNSET
        return normalized

    def generate_image(
        self,
        request: GenerationRequest,
        host: HostLike = None,
        *,
        discount: bool = False,
        cancel=None,
    ) -> List[ResultImage]:
        normalized = self.prepare(request)
        self._log_cost(normalized, discount)
        self.encode_vibe(normalized)
        host_instance = self._host(host)
        payload = to_wire_payload(normalized)
        url = f"{host_instance.url}{ENDPOINT_IMAGE}"

        def attempt() -> List[ResultImage]:
            _check_cancel(cancel)
            response = self._post(url, payload, host_instance.accept)
            try:
                _check_content_type(response, url)
                body = response.read_all()
            finally:
                response.close()
            _check_cancel(cancel)
            return assemble_response(body, host_instance.name.lower(), normalized)

        return self._retry(attempt)

    def _open_stream(self, url: str, payload, accept: str, cancel) -> TransportResponse:
        def attempt() -> TransportResponse:
            _check_cancel(cancel)
            response = self._post(url, payload, accept, stream=True)
            try:
                _check_content_type(response, url)
            except TransportError:
                response.close()
                raise
            return response

        return self._retry(attempt)

    def stream_image(
        self,
        request: GenerationRequest,
        host: HostLike = None,
        *,
        discount: bool = False,
        cancel=None,
    ) -> Iterator[StreamEvent]:
        """Return an iterator of progress events in arrival order.

        Normalization runs before this returns, so a ``ValidationError``
        surfaces at the call rather than on the first ``next()``. Retries
        only cover opening the stream; an error after the first chunk
        propagates, and the partial record buffer is dropped.
        """
        normalized = self.prepare(request)
        self._log_cost(normalized, discount)
        host_instance = self._host(host)
        return self._stream_events(normalized, host_instance, cancel)

    def _stream_events(
        self, normalized: NormalizedRequest, host_instance: HostInstance, cancel
    ) -> Iterator[StreamEvent]:
        self.encode_vibe(normalized)
        payload = to_wire_payload(normalized)
        url = f"{host_instance.url}{ENDPOINT_IMAGE_STREAM}"
        response = self._open_stream(url, payload, host_instance.accept, cancel)
        parser: Optional[Union[BinaryStreamParser, EventStreamParser]] = None
        try:
            for chunk in response.iter_chunks():
                _check_cancel(cancel)
                if parser is None:
                    parser = parser_for(chunk, response.content_type)
                for event in parser.feed(chunk):
                    event.image.request = normalized
                    yield event
            _check_cancel(cancel)
            if isinstance(parser, EventStreamParser):
                for event in parser.close():
                    event.image.request = normalized
                    yield event
            elif parser is not None:
                parser.close()
        finally:
            response.close()

    # -- director tools -----------------------------------------------------

    def use_director_tool(self, request: DirectorRequest, host: HostLike = None, *, cancel=None) -> ResultImage:
        host_instance = self._host(host)
        url = f"{host_instance.url}{ENDPOINT_DIRECTOR}"
        payload = to_wire_object(request)

        def attempt() -> ResultImage:
            _check_cancel(cancel)
            response = self._post(url, payload, host_instance.accept)
            try:
                _check_content_type(response, url)
                body = response.read_all()
            finally:
                response.close()
            if not body:
                raise TransportError("Received empty response from the server.", status=response.status_code)
            return assemble_director(body, request.req_type)

        return self._retry(attempt)

    def _director(self, tool: DirectorTool, image: ImageInput, host: HostLike, **extra) -> ResultImage:
        parsed = self.codec.describe(image)
        request = DirectorRequest(
            req_type=tool,
            width=parsed.width,
            height=parsed.height,
            image=parsed.base64,
            **extra,
        )
        return self.use_director_tool(request, host)

    def line_art(self, image: ImageInput, host: HostLike = None) -> ResultImage:
        return self._director(DirectorTool.LINEART, image, host)

    def sketch(self, image: ImageInput, host: HostLike = None) -> ResultImage:
        return self._director(DirectorTool.SKETCH, image, host)

    def background_removal(self, image: ImageInput, host: HostLike = None) -> ResultImage:
        return self._director(DirectorTool.BACKGROUND_REMOVAL, image, host)

    def declutter(self, image: ImageInput, host: HostLike = None) -> ResultImage:
        return self._director(DirectorTool.DECLUTTER, image, host)

    def colorize(self, image: ImageInput, host: HostLike = None, prompt: str = "", defry: int = 0) -> ResultImage:
        return self._director(DirectorTool.COLORIZE, image, host, prompt=prompt, defry=defry)

    def change_emotion(
        self,
        image: ImageInput,
        host: HostLike = None,
        emotion: Union[Emotion, str] = Emotion.NEUTRAL,
        prompt: str = "",
        emotion_level: Union[EmotionLevel, int] = EmotionLevel.NORMAL,
    ) -> ResultImage:
        mood = emotion.value if isinstance(emotion, Emotion) else str(emotion)
        level = int(emotion_level if emotion_level is not None else EmotionLevel.NORMAL)
        return self._director(DirectorTool.EMOTION, image, host, prompt=f"{mood};;{prompt}", defry=level)

    # -- persistence --------------------------------------------------------

    def save_results(
        self,
        images: List[ResultImage],
        out_dir: Optional[Union[str, Path]] = None,
        *,
        request: Optional[GenerationRequest] = None,
        receipts: bool = True,
    ) -> List[Path]:
        """Write images (and a JSON receipt per image) to ``out_dir``."""
        directory = ensure_out_dir(Path(out_dir) if out_dir else None)
        paths = []
        for image in images:
            path = image.save(directory, store=self.store)
            paths.append(path)
            if receipts and image.request is not None:
                normalized = image.request
                receipt = build_receipt(
                    request=request or normalized,
                    normalized=normalized,
                    payload=to_wire_payload(normalized),
                    images=[image],
                    cost=estimate_cost(normalized),
                    host=self._host(None).name,
                )
                write_receipt(directory / f"receipt-{Path(image.filename).stem}.json", receipt)
        return paths


def _build_request(
    prompt: str,
    *,
    model: Optional[str] = None,
    action: Union[Action, str, None] = None,
    size: Optional[str] = None,
    n: int = 1,
    seed: Optional[int] = None,
    negative_prompt: Optional[str] = None,
    **params: Any,
) -> GenerationRequest:
    request = GenerationRequest(prompt=prompt, n_samples=n)
    if model:
        request.model = model
    if action:
        request.action = action
    if size:
        request.size = size
    if seed is not None:
        request.seed = seed
    if negative_prompt is not None:
        request.negative_prompt = negative_prompt
    for key, value in params.items():
        if value is None:
            continue
        if not hasattr(request, key):
            raise TypeError(f"Unknown generation parameter '{key}'")
        setattr(request, key, value)
    return request


def generate(
    *,
    prompt: str,
    model: Optional[str] = None,
    size: Optional[str] = None,
    n: int = 1,
    seed: Optional[int] = None,
    negative_prompt: Optional[str] = None,
    host: HostLike = None,
    out_dir: Optional[Union[str, Path]] = None,
    token: Optional[str] = None,
    client: Optional[NovelAIClient] = None,
    **params: Any,
) -> List[ResultImage]:
    client = client or NovelAIClient(token=token)
    request = _build_request(
        prompt, model=model, size=size, n=n, seed=seed, negative_prompt=negative_prompt, **params
    )
    images = client.generate_image(request, host)
    client.save_results(images, out_dir, request=request)
    return images


def edit(
    *,
    prompt: str,
    init_image: ImageInput,
    mask: Optional[ImageInput] = None,
    strength: Optional[float] = None,
    model: Optional[str] = None,
    size: Optional[str] = None,
    n: int = 1,
    seed: Optional[int] = None,
    negative_prompt: Optional[str] = None,
    host: HostLike = None,
    out_dir: Optional[Union[str, Path]] = None,
    token: Optional[str] = None,
    client: Optional[NovelAIClient] = None,
    **params: Any,
) -> List[ResultImage]:
    """img2img without a mask, inpainting with one."""
    client = client or NovelAIClient(token=token)
    action = Action.INPAINT if mask is not None else Action.IMG2IMG
    request = _build_request(
        prompt,
        model=model,
        action=action,
        size=size,
        n=n,
        seed=seed,
        negative_prompt=negative_prompt,
        image=init_image,
        mask=mask,
        strength=strength,
        **params,
    )
    images = client.generate_image(request, host)
    client.save_results(images, out_dir, request=request)
    return images


def stream(
    *,
    prompt: str,
    model: Optional[str] = None,
    size: Optional[str] = None,
    n: int = 1,
    seed: Optional[int] = None,
    negative_prompt: Optional[str] = None,
    host: HostLike = None,
    out_dir: Optional[Union[str, Path]] = None,
    token: Optional[str] = None,
    client: Optional[NovelAIClient] = None,
    cancel=None,
    **params: Any,
) -> Iterator[StreamEvent]:
    """Iterate over every event; final images are also saved to ``out_dir``."""
    client = client or NovelAIClient(token=token)
    request = _build_request(
        prompt, model=model, size=size, n=n, seed=seed, negative_prompt=negative_prompt, **params
    )
    events = client.stream_image(request, host, cancel=cancel)
    return _save_finals(client, events, out_dir, request)


def _save_finals(
    client: NovelAIClient,
    events: Iterator[StreamEvent],
    out_dir: Optional[Union[str, Path]],
    request: GenerationRequest,
) -> Iterator[StreamEvent]:
    for event in events:
        if event.is_final:
            client.save_results([event.image], out_dir, request=request)
        yield event
