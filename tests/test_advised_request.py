"""Test advisors.api envelopes"""

# pyright: basic

import unittest
from collections.abc import Sequence

from pydantic import ValidationError

from lmchat.advisors.api import (
    AdvisedRequest,
    AdvisedResponse,
    FORMAT_PARAM_KEY,
)
from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    MediaBlock,
    Message,
    assistant_message,
    user_message,
)
from lmchat.language_models.prompts import ChatOptions
from lmchat.language_models.tools import ToolCallback, create_tool


class NullModel(BaseChatModel):
    def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        return ChatResponse()


model = NullModel()


def lookup(args: dict) -> str:
    return "found"


class TestAdvisedRequest(unittest.TestCase):

    def test_defaults_are_empty(self):
        request = AdvisedRequest(chat_model=model, user_text="Hi")
        self.assertEqual(request.media, ())
        self.assertEqual(request.messages, ())
        self.assertEqual(request.tool_names, ())
        self.assertEqual(dict(request.user_params), {})
        self.assertEqual(dict(request.advise_context), {})
        self.assertEqual(dict(request.tool_context), {})

    def test_user_text_required(self):
        with self.assertRaises(ValidationError):
            AdvisedRequest(chat_model=model, user_text="")
        with self.assertRaises(ValidationError):
            AdvisedRequest(chat_model=model, user_text="   ")

    def test_chat_model_required(self):
        with self.assertRaises(ValidationError):
            AdvisedRequest(chat_model="OpenAI/gpt-4o", user_text="Hi")

    def test_immutable(self):
        request = AdvisedRequest(
            chat_model=model, user_text="Hi", advise_context={'a': 1}
        )
        with self.assertRaises(ValidationError):
            request.user_text = "Bye"
        with self.assertRaises(TypeError):
            request.advise_context['b'] = 2

    def test_from_instance(self):
        request = AdvisedRequest(
            chat_model=model, user_text="Hi", system_text="Be brief"
        )
        changed = request.from_instance(user_text="Bye")
        self.assertEqual(changed.user_text, "Bye")
        self.assertEqual(changed.system_text, "Be brief")
        self.assertIs(changed.chat_model, model)
        self.assertEqual(request.user_text, "Hi")

    def test_from_instance_validates(self):
        request = AdvisedRequest(chat_model=model, user_text="Hi")
        with self.assertRaises(ValidationError):
            request.from_instance(user_text="")

    def test_update_context(self):
        request = AdvisedRequest(
            chat_model=model, user_text="Hi", advise_context={'a': 1}
        )

        def transform(ctx: dict) -> dict:
            ctx['b'] = 2
            return ctx

        updated = request.update_context(transform)
        self.assertEqual(dict(updated.advise_context), {'a': 1, 'b': 2})
        self.assertEqual(dict(request.advise_context), {'a': 1})


class TestToPrompt(unittest.TestCase):

    def test_user_only(self):
        prompt = AdvisedRequest(chat_model=model, user_text="Hi").to_prompt()
        self.assertEqual(len(prompt.messages), 1)
        self.assertEqual(prompt.messages[0].role, 'user')
        self.assertEqual(prompt.messages[0].text, "Hi")

    def test_history_system_user(self):
        history = (user_message("My name is Ann"), assistant_message("Hi Ann"))
        request = AdvisedRequest(
            chat_model=model,
            user_text="Tell me about {topic}",
            user_params={'topic': "cats"},
            system_text="You are {persona}",
            system_params={'persona': "a vet"},
            messages=history,
        )
        messages = request.to_prompt().messages
        self.assertEqual(messages[:2], history)
        self.assertEqual(messages[2].role, 'system')
        self.assertEqual(messages[2].text, "You are a vet")
        self.assertEqual(messages[3].text, "Tell me about cats")

    def test_blank_system_text_skipped(self):
        request = AdvisedRequest(
            chat_model=model, user_text="Hi", system_text="  \n"
        )
        roles = [m.role for m in request.to_prompt().messages]
        self.assertEqual(roles, ['user'])

    def test_literal_braces_without_params(self):
        request = AdvisedRequest(
            chat_model=model, user_text="Parse {\"a\": 1}"
        )
        self.assertEqual(
            request.to_prompt().messages[0].text, "Parse {\"a\": 1}"
        )

    def test_format_param(self):
        request = AdvisedRequest(
            chat_model=model,
            user_text="List three colors",
            advise_context={FORMAT_PARAM_KEY: "Answer in JSON"},
        )
        text = request.to_prompt().messages[-1].text
        self.assertTrue(text.startswith("List three colors"))
        self.assertTrue(text.endswith("Answer in JSON"))

    def test_media(self):
        media = MediaBlock(mime_type="image/png", data="aGVsbG8=")
        request = AdvisedRequest(
            chat_model=model, user_text="What is this?", media=(media,)
        )
        self.assertEqual(request.to_prompt().messages[-1].media, (media,))

    def test_tools_and_context(self):
        callback = create_tool(lookup)
        request = AdvisedRequest(
            chat_model=model,
            user_text="Find it",
            chat_options=ChatOptions(temperature=0.2),
            tool_names=("search",),
            tool_callbacks=(callback,),
            tool_context={'user': "Ann"},
        )
        prompt = request.to_prompt()
        self.assertEqual(prompt.tool_callbacks, (callback,))
        self.assertEqual(prompt.options.tool_names, ("search",))
        self.assertEqual(prompt.options.temperature, 0.2)
        self.assertEqual(dict(prompt.tool_context), {'user': "Ann"})

    def test_idempotent(self):
        request = AdvisedRequest(
            chat_model=model,
            user_text="Tell me about {topic}",
            user_params={'topic': "cats"},
            system_text="You are {persona}",
            system_params={'persona': "a vet"},
            messages=(user_message("Hello"),),
            advise_context={FORMAT_PARAM_KEY: "Be brief"},
        )
        first = request.to_prompt()
        second = request.to_prompt()
        self.assertEqual(first.messages, second.messages)
        self.assertEqual(first.options, second.options)
        self.assertEqual(len(request.messages), 1)


class TestAdvisedResponse(unittest.TestCase):

    def test_empty(self):
        response = AdvisedResponse()
        self.assertIsNone(response.response)
        self.assertEqual(dict(response.advise_context), {})

    def test_update_context(self):
        response = AdvisedResponse(
            response=ChatResponse(message=assistant_message("ok")),
            advise_context={'a': 1},
        )
        updated = response.update_context(lambda ctx: {**ctx, 'b': 2})
        self.assertEqual(dict(updated.advise_context), {'a': 1, 'b': 2})
        self.assertEqual(updated.response, response.response)


if __name__ == '__main__':
    unittest.main()
