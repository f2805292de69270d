"""Weather report data models."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WeatherModel(BaseModel):
    """Weather payloads use camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CurrentWeather(WeatherModel):
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    uv_index: float = 0
    visibility: float = 0
    pressure: float = 0
    condition: str
    description: str = ""
    sunrise: str = ""
    sunset: str = ""
    icon: str = ""


class ForecastDay(WeatherModel):
    date: str
    day: str
    high: float
    low: float
    condition: str
    precipitation: float = 0
    humidity: float = 0
    wind_speed: float = 0
    icon: str = ""


class WeatherAlert(WeatherModel):
    type: str
    title: str
    description: str
    severity: str
    valid_until: str = ""


class FarmingTip(WeatherModel):
    type: Literal["warning", "action", "info"]
    title: str
    description: str


class WeatherReport(WeatherModel):
    """Weather plus farming advice for one location."""

    current: CurrentWeather
    forecast: list[ForecastDay] = Field(default_factory=list)
    alerts: list[WeatherAlert] = Field(default_factory=list)
    farming_tips: list[FarmingTip] = Field(default_factory=list)
