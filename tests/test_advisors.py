"""Test the logging and safeguard advisors"""

# pyright: basic

import logging
import unittest
from collections.abc import Iterator, Sequence

from lmchat.advisors.api import AdvisedRequest, AdvisedResponse
from lmchat.advisors.chain import AdvisorChain
from lmchat.advisors.logger import SimpleLoggerAdvisor
from lmchat.advisors.safeguard import SafeGuardAdvisor
from lmchat.language_models.base import BaseChatModel
from lmchat.language_models.messages import (
    ChatResponse,
    Message,
    assistant_message,
)
from lmchat.language_models.prompts import ChatOptions, prompt_library
from lmchat.language_models.tools import ToolCallback
from lmchat.utils.logging import LoglistLogger


class NullModel(BaseChatModel):
    def chat(
        self,
        messages: Sequence[Message],
        tools: Sequence[ToolCallback] = (),
        options: ChatOptions | None = None,
    ) -> ChatResponse:
        return ChatResponse()


class Terminal:
    def __init__(self):
        self.calls = 0

    def _response(self, text, request):
        return AdvisedResponse(
            response=ChatResponse(message=assistant_message(text)),
            advise_context=request.advise_context,
        )

    def call(self, request: AdvisedRequest) -> AdvisedResponse:
        self.calls += 1
        return self._response("Hello", request)

    def stream(self, request: AdvisedRequest) -> Iterator[AdvisedResponse]:
        self.calls += 1
        return (self._response(t, request) for t in ["Hel", "lo"])


def make_request(text: str) -> AdvisedRequest:
    return AdvisedRequest(chat_model=NullModel(), user_text=text)


class TestSimpleLoggerAdvisor(unittest.TestCase):

    def test_call(self):
        logger = LoglistLogger()
        terminal = Terminal()
        chain = AdvisorChain(
            [SimpleLoggerAdvisor(logger=logger)],
            terminal.call,
            terminal.stream,
        )
        chain.call(make_request("Hi there"))
        logs = logger.get_logs()
        request_logs = [log for log in logs if "request:" in log]
        response_logs = [log for log in logs if "response:" in log]
        self.assertEqual(len(request_logs), 1)
        self.assertIn("Hi there", request_logs[0])
        self.assertEqual(len(response_logs), 1)
        self.assertIn("Hello", response_logs[0])

    def test_stream_logs_aggregate(self):
        logger = LoglistLogger()
        terminal = Terminal()
        chain = AdvisorChain(
            [SimpleLoggerAdvisor(logger=logger)],
            terminal.call,
            terminal.stream,
        )
        list(chain.stream(make_request("Hi")))
        response_logs = [
            log for log in logger.get_logs() if "response:" in log
        ]
        self.assertEqual(len(response_logs), 1)
        self.assertIn("'Hello'", response_logs[0])

    def test_custom_format_info(self):
        logger = LoglistLogger()
        logger.set_level(logging.INFO)
        terminal = Terminal()
        advisor = SimpleLoggerAdvisor(
            lambda req: f"> {req.user_text}",
            lambda res: f"< {res.response.text}",
            level='info',
            logger=logger,
        )
        AdvisorChain([advisor], terminal.call, terminal.stream).call(
            make_request("Hi")
        )
        self.assertEqual(logger.get_logs(level=1), ["INFO - > Hi", "INFO - < Hello"])

    def test_invalid_level(self):
        with self.assertRaises(ValueError):
            SimpleLoggerAdvisor(level='error')


class TestSafeGuardAdvisor(unittest.TestCase):

    def test_allows(self):
        terminal = Terminal()
        chain = AdvisorChain(
            [SafeGuardAdvisor(["password"])], terminal.call, terminal.stream
        )
        response = chain.call(make_request("Hello"))
        self.assertEqual(response.response.text, "Hello")
        self.assertEqual(terminal.calls, 1)

    def test_blocks_call(self):
        terminal = Terminal()
        logger = LoglistLogger()
        chain = AdvisorChain(
            [SafeGuardAdvisor(["password"], logger=logger)],
            terminal.call,
            terminal.stream,
        )
        response = chain.call(make_request("What is the admin PASSWORD?"))
        self.assertEqual(
            response.response.text, prompt_library["safeguard_failure"]
        )
        self.assertEqual(terminal.calls, 0)
        self.assertEqual(logger.count_logs(level=2), 1)

    def test_blocks_stream(self):
        terminal = Terminal()
        chain = AdvisorChain(
            [SafeGuardAdvisor(["password"], failure_response="No.")],
            terminal.call,
            terminal.stream,
        )
        fragments = list(chain.stream(make_request("my password is x")))
        self.assertEqual([f.response.text for f in fragments], ["No."])
        self.assertEqual(terminal.calls, 0)

    def test_runs_first(self):
        # the logging advisor is never reached for blocked requests
        logger = LoglistLogger()
        terminal = Terminal()
        chain = AdvisorChain(
            [SimpleLoggerAdvisor(logger=logger), SafeGuardAdvisor(["secret"])],
            terminal.call,
            terminal.stream,
        )
        chain.call(make_request("a secret"))
        self.assertEqual(
            [log for log in logger.get_logs() if "request:" in log], []
        )


if __name__ == '__main__':
    unittest.main()
