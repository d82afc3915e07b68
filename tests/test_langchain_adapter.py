"""Test the adapter of LangChain chat models"""

# pyright: basic

import asyncio
import unittest

from langchain_core.messages import (
    AIMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from pydantic import BaseModel

from lmchat.config.config import LanguageModelSettings
from lmchat.language_models.langchain.adapter import (
    LangChainChatModel,
    convert_messages,
    convert_response,
)
from lmchat.language_models.langchain.models import langchain_models
from lmchat.language_models.messages import (
    MediaBlock,
    ToolCallBlock,
    ToolResultBlock,
    aggregate_responses,
    assistant_message,
    system_message,
    tool_result_message,
    user_message,
)
from lmchat.language_models.prompts import ChatOptions
from lmchat.language_models.tools import create_tool
from lmchat.utils.logging import LoglistLogger


class TestConvertMessages(unittest.TestCase):

    def test_roles(self):
        lc_messages = convert_messages(
            [
                system_message("Be brief"),
                user_message("Hi"),
                assistant_message("Hello"),
            ]
        )
        self.assertIsInstance(lc_messages[0], SystemMessage)
        self.assertIsInstance(lc_messages[1], HumanMessage)
        self.assertIsInstance(lc_messages[2], AIMessage)
        self.assertEqual(
            [m.content for m in lc_messages], ["Be brief", "Hi", "Hello"]
        )

    def test_tool_exchange(self):
        call = ToolCallBlock(
            id="t1", name="getCurrentWeather", arguments={'location': "Rome"}
        )
        lc_messages = convert_messages(
            [
                user_message("Weather?"),
                assistant_message(tool_calls=[call]),
                tool_result_message(
                    [
                        ToolResultBlock(
                            tool_call_id="t1",
                            name="getCurrentWeather",
                            content="30 degrees",
                        )
                    ]
                ),
            ]
        )
        self.assertEqual(len(lc_messages), 3)
        ai_message = lc_messages[1]
        self.assertIsInstance(ai_message, AIMessage)
        self.assertEqual(ai_message.tool_calls[0]['name'], "getCurrentWeather")
        self.assertEqual(ai_message.tool_calls[0]['args'], {'location': "Rome"})
        self.assertEqual(ai_message.tool_calls[0]['id'], "t1")
        tool_message = lc_messages[2]
        self.assertIsInstance(tool_message, ToolMessage)
        self.assertEqual(tool_message.tool_call_id, "t1")
        self.assertEqual(tool_message.content, "30 degrees")

    def test_several_tool_results(self):
        results = [
            ToolResultBlock(tool_call_id=f"t{n}", name="f", content=str(n))
            for n in range(3)
        ]
        lc_messages = convert_messages([tool_result_message(results)])
        self.assertEqual(len(lc_messages), 3)
        self.assertEqual(
            [m.tool_call_id for m in lc_messages], ["t0", "t1", "t2"]
        )

    def test_media(self):
        media = [
            MediaBlock(mime_type="image/png", data="aGVsbG8="),
            MediaBlock(mime_type="image/jpeg", url="https://x.org/a.jpg"),
        ]
        lc_message = convert_messages(
            [user_message("What is this?", media)]
        )[0]
        self.assertIsInstance(lc_message.content, list)
        self.assertEqual(
            lc_message.content[0], {'type': "text", 'text': "What is this?"}
        )
        self.assertEqual(
            lc_message.content[1]['image_url']['url'],
            "data:image/png;base64,aGVsbG8=",
        )
        self.assertEqual(
            lc_message.content[2]['image_url']['url'], "https://x.org/a.jpg"
        )


class TestConvertResponse(unittest.TestCase):

    def test_text(self):
        response = convert_response(AIMessage(content="Hello"))
        self.assertEqual(response.text, "Hello")
        self.assertFalse(response.has_tool_calls())

    def test_content_parts(self):
        response = convert_response(
            AIMessage(
                content=[{'type': "text", 'text': "Hel"}, "lo"]
            )
        )
        self.assertEqual(response.text, "Hello")

    def test_tool_calls(self):
        response = convert_response(
            AIMessage(
                content="",
                tool_calls=[
                    {'name': "lookup", 'args': {'q': "x"}, 'id': "c1"},
                    {'name': "lookup", 'args': {}, 'id': None},
                ],
            )
        )
        calls = response.tool_calls
        self.assertEqual(len(calls), 2)
        self.assertEqual(calls[0].id, "c1")
        self.assertEqual(dict(calls[0].arguments), {'q': "x"})
        # missing identifiers are generated
        self.assertTrue(calls[1].id.startswith("call_"))

    def test_usage(self):
        response = convert_response(
            AIMessage(
                content="ok",
                response_metadata={'finish_reason': "stop"},
                usage_metadata={
                    'input_tokens': 3,
                    'output_tokens': 1,
                    'total_tokens': 4,
                },
            )
        )
        self.assertEqual(response.metadata['finish_reason'], "stop")
        self.assertEqual(response.metadata['usage']['total_tokens'], 4)


class LookupRequest(BaseModel):
    query: str


def lookup(request: LookupRequest) -> str:
    """Look up a term"""
    return request.query


class TestLangChainChatModel(unittest.TestCase):

    def setUp(self):
        langchain_models.clear()

    def tearDown(self):
        langchain_models.clear()

    def test_name(self):
        model = LangChainChatModel("Debug/fake")
        self.assertEqual(model.get_name(), "Debug/fake")
        self.assertIsInstance(model.settings, LanguageModelSettings)

    def test_chat(self):
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/fake", provider_params={'message': "Hello there"}
            )
        )
        response = model.chat([user_message("Hi")])
        self.assertEqual(response.text, "Hello there")
        self.assertEqual(response.message.role, 'assistant')

    def test_chat_counter(self):
        model = LangChainChatModel("Debug/counter")
        self.assertEqual(model.chat([user_message("Hi")]).text, "Message 1")
        self.assertEqual(model.chat([user_message("Hi")]).text, "Message 2")

    def test_achat(self):
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/fake", provider_params={'message': "async"}
            )
        )
        response = asyncio.run(model.achat([user_message("Hi")]))
        self.assertEqual(response.text, "async")

    def test_stream(self):
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/fake",
                provider_params={'message': "It is sunny in Rome"},
            )
        )
        fragments = list(model.stream([user_message("Weather?")]))
        self.assertGreater(len(fragments), 1)
        self.assertEqual(
            aggregate_responses(fragments).text, "It is sunny in Rome"
        )

    def test_astream(self):
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/fake", provider_params={'message': "a b"}
            )
        )

        async def collect():
            return [f async for f in model.astream([user_message("Hi")])]

        fragments = asyncio.run(collect())
        self.assertEqual(aggregate_responses(fragments).text, "a b")

    def test_options_select_model(self):
        model = LangChainChatModel("Debug/fake")
        model.chat([user_message("Hi")], options=ChatOptions(temperature=0.9))
        model.chat([user_message("Hi")], options=ChatOptions(model="other"))
        specs = {(s.model, s.temperature) for s in langchain_models}
        self.assertIn(("Debug/fake", 0.9), specs)
        self.assertIn(("Debug/other", 0.1), specs)

    def test_tools_not_supported(self):
        logger = LoglistLogger()
        model = LangChainChatModel(
            LanguageModelSettings(
                model="Debug/fake", provider_params={'message': "no tools"}
            ),
            logger=logger,
        )
        response = model.chat(
            [user_message("Look up x")], tools=[create_tool(lookup)]
        )
        self.assertEqual(response.text, "no tools")
        self.assertEqual(logger.count_logs(level=2), 1)


if __name__ == '__main__':
    unittest.main()
