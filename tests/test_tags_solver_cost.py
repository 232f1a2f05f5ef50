import pathlib
import sys
import unittest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "scripts"))

from nekoai_image_api.core.contracts import Action, GenerationRequest, Model
from nekoai_image_api.core.cost import estimate_cost, smea_factor
from nekoai_image_api.core.errors import ValidationError
from nekoai_image_api.core.normalizer import normalize_request
from nekoai_image_api.core.solver import parse_dims, resolve_resolution
from nekoai_image_api.core.tags import dedupe_tags, join_tags


class TestTagDedupe(unittest.TestCase):
    def test_case_insensitive_first_seen(self) -> None:
        self.assertEqual(dedupe_tags("a, A, b, a"), "a, b")

    def test_empty(self) -> None:
        self.assertEqual(dedupe_tags(""), "")

    def test_whitespace_and_empty_tags(self) -> None:
        self.assertEqual(dedupe_tags(" x , x ,y"), "x, y")
        self.assertEqual(dedupe_tags("a,, ,b,"), "a, b")

    def test_keeps_first_casing(self) -> None:
        self.assertEqual(dedupe_tags("Blue Hair, blue hair, RED eyes"), "Blue Hair, RED eyes")

    def test_join_tags_skips_blank(self) -> None:
        self.assertEqual(join_tags("a, b", "", None, " c "), "a, b, c")


class TestResolution(unittest.TestCase):
    def test_explicit_rounds_up(self) -> None:
        self.assertEqual(resolve_resolution(None, 1000, 1000), (1024, 1024))

    def test_too_small_raises(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_resolution(None, 10, 10)

    def test_too_large_raises(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_resolution(None, 2048, 2048)

    def test_non_positive_raises(self) -> None:
        with self.assertRaises(ValidationError):
            resolve_resolution(None, 0, 1024)

    def test_preset(self) -> None:
        self.assertEqual(resolve_resolution("normal_portrait"), (832, 1216))
        self.assertEqual(resolve_resolution("large_square"), (1472, 1472))

    def test_unknown_preset_warns(self) -> None:
        warnings = []
        self.assertEqual(resolve_resolution("poster", warnings=warnings), (832, 1216))
        self.assertTrue(any("poster" in warning for warning in warnings))

    def test_rounding_is_reported(self) -> None:
        warnings = []
        resolve_resolution(None, 1000, 1216, warnings)
        self.assertTrue(any("rounded" in warning for warning in warnings))

    def test_single_dimension_completed_from_preset(self) -> None:
        self.assertEqual(resolve_resolution("normal_landscape", width=1000), (1024, 832))

    def test_parse_dims(self) -> None:
        self.assertEqual(parse_dims("832x1216"), (832, 1216))
        self.assertEqual(parse_dims(" 640 X 640 "), (640, 640))
        self.assertIsNone(parse_dims("portrait"))
        self.assertIsNone(parse_dims("0x64"))


class TestCostEstimate(unittest.TestCase):
    def _normalized(self, **overrides) -> GenerationRequest:
        request = GenerationRequest(prompt="1girl", seed=1, **overrides)
        return normalize_request(request)

    def test_default_portrait_cost(self) -> None:
        normalized = self._normalized()
        # 832x1216 @ 28 steps: ceil(2.986 + 16.297) = 20
        self.assertEqual(estimate_cost(normalized), 20)

    def test_square_billed_as_portrait(self) -> None:
        square = self._normalized(width=1024, height=1024)
        portrait = self._normalized()
        self.assertEqual(estimate_cost(square), estimate_cost(portrait))

    def test_monotonic_in_steps(self) -> None:
        costs = [estimate_cost(self._normalized(steps=steps)) for steps in (1, 10, 28, 29, 40, 50)]
        self.assertEqual(costs, sorted(costs))

    def test_monotonic_in_samples(self) -> None:
        costs = [estimate_cost(self._normalized(n_samples=n)) for n in (1, 2, 3, 4)]
        self.assertEqual(costs, sorted(costs))
        self.assertEqual(costs[3], costs[0] * 4)

    def test_discount_first_sample_free(self) -> None:
        normalized = self._normalized(n_samples=4)
        full = estimate_cost(normalized)
        self.assertEqual(estimate_cost(normalized, True), full - full // 4)

    def test_no_discount_above_free_steps(self) -> None:
        normalized = self._normalized(steps=29, n_samples=2)
        self.assertEqual(estimate_cost(normalized, True), estimate_cost(normalized))

    def test_minimum_two_per_sample(self) -> None:
        normalized = self._normalized(width=64, height=64, steps=1)
        self.assertEqual(estimate_cost(normalized), 2)

    def test_img2img_strength_scales(self) -> None:
        full = self._normalized(action=Action.IMG2IMG, strength=1.0, image="aW1n")
        half = self._normalized(action=Action.IMG2IMG, strength=0.5, image="aW1n")
        self.assertLess(estimate_cost(half), estimate_cost(full))

    def test_legacy_smea_factor(self) -> None:
        base = self._normalized(model=Model.V3)
        self.assertEqual(smea_factor(base), 1.0)
        smea = self._normalized(model=Model.V3, sm=True)
        dyn = self._normalized(model=Model.V3, sm=True, sm_dyn=True)
        self.assertEqual(smea_factor(smea), 1.2)
        self.assertEqual(smea_factor(dyn), 1.4)
        self.assertGreater(estimate_cost(dyn), estimate_cost(base))

    def test_auto_smea_factor(self) -> None:
        self.assertEqual(smea_factor(self._normalized(auto_smea=True)), 1.2)


if __name__ == "__main__":
    unittest.main()
