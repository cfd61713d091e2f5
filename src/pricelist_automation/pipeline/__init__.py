"""Extraction pipeline stages: normalize -> encode -> request -> recover."""

from .normalize import CompressionOptions, compress, normalize
from .encode import decode, encode, parse_data_url
from .prompt import PROMPT_TEMPLATE, PROMPT_VERSION, build_prompt
from .request import CancelToken, ExtractionRequester, build_openai_client
from .recover import recover, recover_detailed

__all__ = [
    "CompressionOptions",
    "compress",
    "normalize",
    "decode",
    "encode",
    "parse_data_url",
    "PROMPT_TEMPLATE",
    "PROMPT_VERSION",
    "build_prompt",
    "CancelToken",
    "ExtractionRequester",
    "build_openai_client",
    "recover",
    "recover_detailed",
]
