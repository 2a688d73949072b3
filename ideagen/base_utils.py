# ideagen/base_utils.py

import logging
import re

import commentjson
import yaml
from json_repair import repair_json

from ideagen.errors import MalformedResponseError

logger = logging.getLogger("ideagen")


class BaseUtils():

    def color_print(self, text, color=None):
        COLOR_CODES = {
            'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35', 'cyan': '36',
            'bright_red': '91', 'bright_green': '92', 'bright_yellow': '93',
        }
        if color and color.lower() in COLOR_CODES:
            text = f"\033[{COLOR_CODES[color.lower()]}m{text}\033[0m"
        logger.info(str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code)

    def load_fault_tolerant_json(self, json_str):
        """
        Parse LLM output that is supposed to be a JSON object.

        Tries, in order: commentjson (tolerates // comments), YAML (tolerates
        trailing commas, unquoted keys), then json_repair on the raw text.
        Raises MalformedResponseError when nothing yields a dict or list.
        """
        def load_json(raw):
            errors = []
            cleaned = self.clean_triple_backticks(raw).strip()
            try:
                return commentjson.loads(cleaned), ""
            except Exception as e:
                errors.append(str(e))
            try:
                data = yaml.safe_load(cleaned)
                if isinstance(data, (dict, list)):
                    return data, ""
                errors.append("YAML parsing did not produce an object")
            except Exception as e:
                errors.append(str(e))
            return None, "\n--\n".join(errors)

        if not isinstance(json_str, str) or not json_str.strip():
            raise MalformedResponseError("load_fault_tolerant_json: empty response")

        data, err = load_json(json_str)
        if isinstance(data, (dict, list)):
            return data

        repaired = repair_json(self.clean_triple_backticks(json_str))
        r_data, r_err = load_json(repaired)
        if isinstance(r_data, (dict, list)) and r_data:
            return r_data

        self.color_print(f"load_fault_tolerant_json: JSON parsing failed: {err}\n{r_err}", color="red")
        raise MalformedResponseError("load_fault_tolerant_json: response is not valid JSON")

    def unsafe_string_format(self, dest_string, **kwargs):
        """
        Replace {key} placeholders for the keys passed in kwargs only; every
        other brace (JSON examples in prompts) is left untouched.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            missing_keys.append(key)
            return match.group(0)

        result = re.sub(r'\{(\w+)\}', replacer, dest_string)
        if missing_keys:
            logger.debug(f"unsafe_string_format: placeholders left as-is: {', '.join(missing_keys)}")
        return result
