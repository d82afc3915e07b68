"""Test settings module"""

import os
import unittest

from pydantic import ValidationError

from lmchat.config.config import (
    Settings,
    ChatSettings,
    serialize_settings,
    export_settings,
    LanguageModelSettings,
    load_settings,
    create_default_config_file,
    format_pydantic_error_message,
)

# This is whatever config.toml is at present
base_settings: Settings = Settings()


class TestSettings(unittest.TestCase):
    def test_create_settings(self):
        sets: Settings = Settings()
        conf: str = serialize_settings(sets)
        self.assertTrue(bool(conf))
        self.assertIn("[model]", conf)
        self.assertIn("[chat]", conf)

    def test_default_settings(self):
        sets: Settings = Settings()
        self.assertEqual(base_settings, sets)

    def test_chat_defaults(self):
        chat = ChatSettings()
        self.assertEqual(chat.tool_max_rounds, 10)
        self.assertEqual(chat.memory_conversation_id, "default")
        self.assertEqual(chat.memory_retrieve_size, 100)
        self.assertEqual(chat.memory_write_failure, 'abort')

    def test_chat_settings_given(self):
        sets = Settings(
            chat={'tool_max_rounds': None, 'memory_write_failure': 'log'}
        )
        self.assertIsNone(sets.chat.tool_max_rounds)
        self.assertEqual(sets.chat.memory_write_failure, 'log')

    def test_chat_settings_invalid(self):
        with self.assertRaises(ValidationError):
            Settings(chat={'tool_max_rounds': 0})
        with self.assertRaises(ValidationError):
            Settings(chat={'memory_write_failure': 'ignore'})

    def test_set_settings_given(self):
        sets: Settings = Settings(**{'model': {'model': "OpenAI/gpt-4o"}})
        self.assertEqual(sets.model.get_model_source(), "OpenAI")
        self.assertEqual(sets.model.get_model_name(), "gpt-4o")

    def test_set_settings_given_spaces(self):
        sets: Settings = Settings(
            **{'model': {'model': "Anthropic  / claude-3-5-haiku-latest"}}
        )
        self.assertEqual(sets.model.get_model_source(), "Anthropic")
        self.assertEqual(
            sets.model.get_model_name(), "claude-3-5-haiku-latest"
        )

    def test_set_settings_object(self):
        sets: Settings = Settings(
            model=LanguageModelSettings(
                **{'model': "Mistral/mistral-small-latest", 'temperature': 0.7}
            )
        )
        self.assertEqual(sets.model.get_model_name(), "mistral-small-latest")
        self.assertEqual(sets.model.temperature, 0.7)

    def test_set_settings_incomplete(self):
        # need to specify name model
        with self.assertRaises(ValueError):
            Settings(**{'model': {'model': "OpenAI"}})

    def test_set_settings_empty(self):
        with self.assertRaises(ValueError):
            LanguageModelSettings(**{})

    def test_set_settings_invalid_field(self):
        with self.assertRaises(ValueError):
            LanguageModelSettings(
                **{'model': "OpenAI/gpt-4o", 'peppa': "this"}
            )

    def test_set_settings_invalid_provider(self):
        # cohere not supported
        with self.assertRaises(ValueError):
            Settings(**{'model': {'model': "cohere/latest"}})

    def test_zhipu_provider(self):
        sets = LanguageModelSettings(
            model="ZhiPu/glm-4", provider_params={'top_p': 0.7}
        )
        self.assertEqual(sets.get_model_source(), "ZhiPu")

    def test_provider_params_invalid(self):
        with self.assertRaises(ValueError):
            LanguageModelSettings(
                model="OpenAI/gpt-4o", provider_params={'top_k': 3}
            )

    def test_settings_frozen(self):
        sets: Settings = Settings()
        with self.assertRaises(ValueError):
            sets.model.model = "Gemini/gemini-latest"

    def test_hashability(self):
        settings1 = LanguageModelSettings(
            model="OpenAI/gpt-4o-mini", provider_params={"top_p": 0.9}
        )
        settings2 = LanguageModelSettings(
            model="OpenAI/gpt-4o-mini", provider_params={"top_p": 0.9}
        )
        settings3 = LanguageModelSettings(
            model="OpenAI/gpt-4o-mini", provider_params={"top_p": 0.8}
        )
        self.assertEqual(hash(settings1), hash(settings2))
        self.assertNotEqual(hash(settings1), hash(settings3))
        self.assertEqual({settings1: 1}[settings2], 1)

    def test_from_instance(self):
        sets = LanguageModelSettings(model="OpenAI/gpt-4o", temperature=0.3)
        changed = sets.from_instance(temperature=0.9, max_tokens=None)
        self.assertEqual(changed.temperature, 0.9)
        self.assertIsNone(changed.max_tokens)
        self.assertEqual(changed.model, "OpenAI/gpt-4o")
        self.assertEqual(sets.temperature, 0.3)

    def test_readwrite_settings(self):
        sets = Settings(
            model={'model': "Gemini/gemini-latest"},
            chat={'tool_max_rounds': 4},
        )
        export_settings(sets, "config_test.toml")

        loaded: Settings = load_settings("config_test.toml")
        self.assertEqual(loaded.model.get_model_source(), "Gemini")
        self.assertEqual(loaded.model.get_model_name(), "gemini-latest")
        self.assertEqual(loaded.chat.tool_max_rounds, 4)
        # unmentioned setting still set
        self.assertEqual(loaded.chat.memory_retrieve_size, 100)
        os.unlink("config_test.toml")

    def test_load_missing(self):
        with self.assertRaises(FileNotFoundError):
            load_settings("no_such_config.toml")

    def test_load_invalid(self):
        with open("invalid_config.toml", "w", encoding="utf-8") as f:
            f.write("[model]\nmodel = \"OpenX/gpt\"\n")
        try:
            with self.assertRaises(ValueError):
                load_settings("invalid_config.toml")
        finally:
            os.unlink("invalid_config.toml")

    def test_default_config(self):
        create_default_config_file("temp_config.toml")
        default_sets = load_settings("temp_config.toml")
        sets = Settings(
            **{'model': {'model': "Mistral/mistral-large-latest"}}
        )
        export_settings(sets, "temp_config.toml")
        create_default_config_file("temp_config.toml")
        sets = load_settings("temp_config.toml")
        self.assertEqual(
            sets.model.get_model_source(),
            default_sets.model.get_model_source(),
        )
        os.unlink("temp_config.toml")

    def test_format_error_message(self):
        message = "1 validation error\nFor further information visit x"
        self.assertEqual(
            format_pydantic_error_message(message), "1 validation error"
        )


if __name__ == "__main__":
    unittest.main()
