"""Payload models shared by the example plugins and their hosts."""

from __future__ import annotations

import pydantic


class GreetInput(pydantic.BaseModel):
    name: str = pydantic.Field(min_length=3)


class GreetOutput(pydantic.BaseModel):
    greeting: str


class TextInput(pydantic.BaseModel):
    text: str


class TextOutput(pydantic.BaseModel):
    text: str
