# dinnerbot/services/weather_service.py
"""
Current weather from OpenWeatherMap plus a short cooking-context sentence.

Any failure (no key, network, non-2xx, malformed payload, timeout) yields the
default report: 20°C, 晴れ, humidity 50%.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx

from dinnerbot.config.settings import settings
from dinnerbot.models.recommendation import WeatherContext, WeatherReport

logger = logging.getLogger(__name__)

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"

DEFAULT_WEATHER = WeatherReport(
    temp=20.0, feels_like=20.0, humidity=50, description="晴れ", wind_speed=0.0
)


def season_for(month: int) -> str:
    if month in (3, 4, 5):
        return "春"
    if month in (6, 7, 8):
        return "夏"
    if month in (9, 10, 11):
        return "秋"
    return "冬"


def _temperature_phrase(temp: float) -> str:
    if temp < 5:
        return "とても寒いので体の芯から温まる鍋物や煮込み料理が合います"
    if temp < 12:
        return "肌寒いので温かいスープや煮物が嬉しい気温です"
    if temp < 20:
        return "過ごしやすい気温で幅広い料理が楽しめます"
    if temp < 27:
        return "やや暖かいのでさっぱりした味付けも合います"
    return "暑いので冷たい料理や食欲をそそるスパイシーな料理がおすすめです"


def _condition_phrase(description: str) -> str:
    d = (description or "").lower()
    if "雨" in d or "rain" in d or "drizzle" in d:
        return "雨の日は買い物が少なく済む家にある材料での料理が便利です"
    if "雪" in d or "snow" in d:
        return "雪の日は温かい料理でほっとしたいところです"
    if "曇" in d or "くもり" in d or "cloud" in d:
        return "曇り空なので彩りのある料理で気分を上げましょう"
    if "晴" in d or "clear" in d:
        return "晴れて気持ちの良い日です"
    return ""


def _humidity_phrase(humidity: int) -> str:
    if humidity >= 70:
        return "湿度が高いのでさっぱりした料理が食べやすいです"
    if humidity <= 40:
        return "空気が乾燥しているので汁物やスープで水分を補いましょう"
    return ""


def build_cooking_context(
    temp: float, description: str, humidity: int, season: str
) -> str:
    """Compose one sentence from temperature, condition and humidity phrases."""
    parts = [
        f"{season}の",
        _temperature_phrase(temp),
    ]
    condition = _condition_phrase(description)
    if condition:
        parts.append("、" + condition)
    hum = _humidity_phrase(humidity)
    if hum:
        parts.append("、" + hum)
    return "".join(parts) + "。"


def to_context(report: WeatherReport, now: Optional[datetime] = None) -> WeatherContext:
    season = season_for((now or datetime.now()).month)
    return WeatherContext(
        **report.model_dump(),
        season=season,
        cooking_context=build_cooking_context(
            report.temp, report.description, report.humidity, season
        ),
    )


class WeatherService:

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openweather_api_key
        self.timeout = (
            timeout if timeout is not None else settings.weather_timeout_seconds
        )
        self._transport = transport

    def _parse(self, data: Dict[str, Any]) -> WeatherReport:
        main = data["main"]
        return WeatherReport(
            temp=float(main["temp"]),
            feels_like=float(main.get("feels_like", main["temp"])),
            humidity=int(main.get("humidity", 50)),
            description=str(data["weather"][0]["description"]),
            wind_speed=float((data.get("wind") or {}).get("speed", 0.0)),
        )

    async def _fetch(self, lat: float, lon: float) -> WeatherReport:
        params = {
            "lat": lat,
            "lon": lon,
            "appid": self.api_key,
            "units": "metric",
            "lang": "ja",
        }
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            resp = await client.get(OPENWEATHER_URL, params=params)
            resp.raise_for_status()
            return self._parse(resp.json())

    async def get_current_weather(
        self, lat: Optional[float] = None, lon: Optional[float] = None
    ) -> WeatherReport:
        if not self.api_key:
            logger.debug("No OpenWeatherMap key; using default weather")
            return DEFAULT_WEATHER.model_copy()

        lat = settings.weather_lat if lat is None else lat
        lon = settings.weather_lon if lon is None else lon
        try:
            report = await asyncio.wait_for(self._fetch(lat, lon), timeout=self.timeout)
            logger.info("Weather: %.1f°C %s", report.temp, report.description)
            return report
        except asyncio.TimeoutError:
            logger.warning("Weather lookup timed out after %.1fs", self.timeout)
        except httpx.HTTPError as exc:
            logger.warning("Weather API error: %s", exc)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("Malformed weather payload: %s", exc)
        return DEFAULT_WEATHER.model_copy()

    async def get_weather_context(
        self, lat: Optional[float] = None, lon: Optional[float] = None
    ) -> WeatherContext:
        return to_context(await self.get_current_weather(lat, lon))
