import unittest

from caption_cli import build_config, parse_args


class CliArgsTests(unittest.TestCase):
    def test_caption_overrides(self):
        args = parse_args(["caption", "/tmp/a.png", "--threshold", "0.7", "--max-words", "8", "--debug", "--json"])
        cfg = build_config(args)
        self.assertEqual(args.path, "/tmp/a.png")
        self.assertTrue(args.json)
        self.assertEqual(cfg.quality_gate_threshold, 0.7)
        self.assertEqual(cfg.max_caption_words, 8)
        self.assertTrue(cfg.debug_mode)

    def test_defaults(self):
        cfg = build_config(parse_args(["caption", "/tmp/a.png"]))
        self.assertEqual(cfg.quality_gate_threshold, 0.5)
        self.assertEqual(cfg.max_caption_words, 20)
        self.assertFalse(cfg.debug_mode)

    def test_info_command(self):
        args = parse_args(["info"])
        self.assertEqual(args.cmd, "info")
        self.assertEqual(build_config(args).max_caption_words, 20)

    def test_bad_threshold(self):
        with self.assertRaises(ValueError):
            build_config(parse_args(["caption", "/tmp/a.png", "--threshold", "2"]))


if __name__ == "__main__":
    unittest.main()
