import pathlib
import sys
import unittest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts"))

from nekoai_image_api.core.contracts import (
    UNSET,
    Center,
    CharacterPrompt,
    DirectorRequest,
    DirectorTool,
    GenerationRequest,
)
from nekoai_image_api.core.normalizer import normalize_request
from nekoai_image_api.core.wire import (
    TOP_LEVEL_FIELDS,
    parameter_keys,
    to_wire_object,
    to_wire_payload,
    wire_table,
)


DISPLAY_CASE_FIELDS = {
    "uc_preset": "ucPreset",
    "quality_toggle": "qualityToggle",
    "auto_smea": "autoSmea",
    "character_prompts": "characterPrompts",
    "inpaint_img2img_strength": "inpaintImg2ImgStrength",
}
VERBATIM_FIELDS = ("v4_prompt", "v4_negative_prompt")


class TestWireNames(unittest.TestCase):
    def test_display_case_fields_match_metadata(self) -> None:
        table = wire_table(GenerationRequest)
        for name, key in DISPLAY_CASE_FIELDS.items():
            self.assertEqual(table[name], key)

    def test_verbatim_fields_keep_their_names(self) -> None:
        table = wire_table(GenerationRequest)
        for name in VERBATIM_FIELDS:
            self.assertEqual(table[name], name)

    def test_local_only_fields_never_sent(self) -> None:
        keys = parameter_keys()
        for local in ("res_preset", "size", "warnings", "model", "action"):
            self.assertNotIn(local, keys)
        self.assertNotIn("prompt", keys)


class TestWirePayload(unittest.TestCase):
    def setUp(self) -> None:
        request = GenerationRequest(
            prompt="1girl",
            seed=42,
            character_prompts=[CharacterPrompt(prompt="girl", center=Center(0.2, 0.4))],
        )
        self.normalized = normalize_request(request)
        self.payload = to_wire_payload(self.normalized)

    def test_top_level_keys(self) -> None:
        self.assertEqual(set(self.payload), {"input", "model", "action", "parameters"})
        self.assertEqual(self.payload["model"], "nai-diffusion-4-5-full")
        self.assertEqual(self.payload["action"], "generate")
        self.assertEqual(self.payload["input"], self.normalized.prompt)
        for name in TOP_LEVEL_FIELDS:
            self.assertNotIn(name, self.payload["parameters"])

    def test_key_casing(self) -> None:
        params = self.payload["parameters"]
        for key in ("ucPreset", "qualityToggle", "autoSmea", "characterPrompts", "inpaintImg2ImgStrength"):
            self.assertIn(key, params)
        for key in ("params_version", "n_samples", "noise_schedule", "v4_prompt", "v4_negative_prompt"):
            self.assertIn(key, params)
        self.assertNotIn("uc_preset", params)
        self.assertNotIn("character_prompts", params)

    def test_unset_fields_omitted(self) -> None:
        params = self.payload["parameters"]
        for key in ("sm", "sm_dyn", "image", "mask", "img2img", "reference_image_multiple", "warnings"):
            self.assertNotIn(key, params)

    def test_none_sent_as_null(self) -> None:
        params = self.payload["parameters"]
        self.assertIn("skip_cfg_above_sigma", params)
        self.assertIsNone(params["skip_cfg_above_sigma"])

    def test_enums_and_nested_structures(self) -> None:
        params = self.payload["parameters"]
        self.assertEqual(params["sampler"], "k_euler_ancestral")
        self.assertEqual(params["noise_schedule"], "karras")
        self.assertEqual(params["stream"], "msgpack")
        caption = params["v4_prompt"]["caption"]
        self.assertEqual(caption["char_captions"][0]["centers"], [{"x": 0.2, "y": 0.4}])
        self.assertIs(params["v4_prompt"]["use_coords"], True)
        self.assertEqual(
            params["characterPrompts"][0],
            {"prompt": "girl", "uc": "lowres, aliasing", "center": {"x": 0.2, "y": 0.4}, "enabled": True},
        )

    def test_explicit_none_overrides(self) -> None:
        request = GenerationRequest(prompt="x", seed=1, controlnet_model=None)
        params = to_wire_payload(normalize_request(request))["parameters"]
        self.assertIsNone(params["controlnet_model"])


class TestWireObject(unittest.TestCase):
    def test_director_request(self) -> None:
        request = DirectorRequest(req_type=DirectorTool.LINEART, width=64, height=32, image="aW1n")
        self.assertEqual(
            to_wire_object(request),
            {"req_type": "lineart", "width": 64, "height": 32, "image": "aW1n"},
        )

    def test_bytes_are_base64(self) -> None:
        self.assertEqual(to_wire_object({"image": b"abc", "skip": UNSET}), {"image": "YWJj"})

    def test_unset_is_none(self) -> None:
        self.assertIsNone(to_wire_object(UNSET))


if __name__ == "__main__":
    unittest.main()
