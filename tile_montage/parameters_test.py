import json
import pathlib
import tempfile
import unittest

import pydantic

from .parameters import PaddingMethod, PeakInterpolationMethod, RegistrationParameters


class ParametersTest(unittest.TestCase):
    def test_defaults(self) -> None:
        params = RegistrationParameters()
        self.assertEqual(params.padding_method, PaddingMethod.zero)
        self.assertEqual(params.peak_interpolation, PeakInterpolationMethod.parabolic)
        self.assertEqual(params.reference_tile, (0, 0))
        self.assertEqual(params.hint_tolerance, 0.5)
        self.assertEqual(params.upsample_factor, 20)
        self.assertIsNone(params.max_workers)

    def test_parsing(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir_name:
            path = pathlib.Path(temp_dir_name) / "params.json"
            with open(path, "w") as f:
                json.dump(
                    {
                        "padding_method": "mirror_with_exponential_decay",
                        "peak_interpolation": "cosine",
                        "reference_tile": [1, 2],
                        "max_workers": 3,
                    },
                    f,
                )
            params = RegistrationParameters.from_json_file(str(path))
        self.assertEqual(params.padding_method, PaddingMethod.mirror_with_exponential_decay)
        self.assertEqual(params.peak_interpolation, PeakInterpolationMethod.cosine)
        self.assertEqual(params.reference_tile, (1, 2))
        self.assertEqual(params.max_workers, 3)

    def test_roundtrip(self) -> None:
        params = RegistrationParameters(
            padding_method=PaddingMethod.edge,
            peak_interpolation=PeakInterpolationMethod.weighted_centroid,
            confidence_floor=2.5,
            reference_tile=(3, 1),
        )
        with tempfile.TemporaryDirectory() as temp_dir_name:
            path = str(pathlib.Path(temp_dir_name) / "params.json")
            params.to_json_file(path)
            loaded = RegistrationParameters.from_json_file(path)
        self.assertEqual(loaded, params)

    def test_rejects_invalid_values(self) -> None:
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(padding_method="wraparound")
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(max_peaks=0)
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(upsample_factor=0)
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(hint_tolerance=1.5)
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(tensor_backend="torch")
        with self.assertRaises(pydantic.ValidationError):
            RegistrationParameters(unknown_option=True)

    def test_frozen(self) -> None:
        params = RegistrationParameters()
        with self.assertRaises(pydantic.ValidationError):
            params.max_peaks = 8
