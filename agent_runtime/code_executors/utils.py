"""Helpers converting between model text and code execution parts."""

import copy
import os
import re

from agent_runtime.code_executors.base import CodeExecutionResult, File
from agent_runtime.types import CodeExecutionResult as CodeExecutionResultPart
from agent_runtime.types import Content, ExecutableCode, Part

# mime type -> (file extension, loader code template)
DATA_FILE_UTIL_MAP: dict[str, tuple[str, str]] = {
    "text/csv": (".csv", "pd.read_csv('{filename}')"),
}

DATA_FILE_HELPER_LIB = '''
import pandas as pd

def crop(s: str, max_chars: int = 64) -> str:
  """Truncates strings longer than max_chars characters."""
  return s[: max_chars - 3] + '...' if len(s) > max_chars else s


def explore_df(df: pd.DataFrame) -> None:
  """Prints some information about a pandas DataFrame."""

  with pd.option_context(
      'display.max_columns', None, 'display.expand_frame_repr', False
  ):
    # Print the column names to never encounter KeyError when selecting one.
    df_dtypes = df.dtypes

    # Obtain information about data types and missing values.
    df_nulls = (len(df) - df.isnull().sum()).apply(
        lambda x: f'{x} / {df.shape[0]} non-null'
    )

    # Explore unique total values in columns using `.unique()`.
    df_unique_count = df.apply(lambda x: len(x.unique()))

    # Explore unique values in columns using `.unique()`.
    df_unique = df.apply(lambda x: crop(str(list(x.unique()))))

    df_info = pd.concat(
        (
            df_dtypes.rename('Dtype'),
            df_nulls.rename('Non-Null Count'),
            df_unique_count.rename('Unique Values Count'),
            df_unique.rename('Unique Values'),
        ),
        axis=1,
    )
    df_info.index.name = 'Columns'
    print(f"""Total rows: {df.shape[0]}
Total columns: {df.shape[1]}

{df_info}""")
'''


def build_executable_code_part(code: str) -> Part:
    return Part(executable_code=ExecutableCode(code=code, language="PYTHON"))


def build_code_execution_result_part(result: CodeExecutionResult) -> Part:
    """stderr becomes a failed outcome; otherwise stdout and saved file names."""
    if result.stderr:
        return Part(
            code_execution_result=CodeExecutionResultPart(outcome="OUTCOME_FAILED", output=result.stderr)
        )
    sections = []
    if result.stdout or not result.output_files:
        sections.append(f"Code execution result:\n{result.stdout}\n")
    if result.output_files:
        names = ",".join(f"`{file.name}`" for file in result.output_files)
        sections.append(f"Saved artifacts:\n{names}")
    return Part(
        code_execution_result=CodeExecutionResultPart(outcome="OUTCOME_OK", output="\n\n".join(sections))
    )


def extract_code_and_truncate_content(
    content: Content | None,
    code_block_delimiters: list[tuple[str, str]],
) -> str | None:
    """Return the first code block and cut ``content`` right after it.

    An executable-code part without a following result wins over code
    embedded in text.
    """
    if not content or not content.parts:
        return None

    for index, part in enumerate(content.parts):
        if part.executable_code:
            is_last = index == len(content.parts) - 1
            if is_last or not content.parts[index + 1].code_execution_result:
                content.parts = content.parts[:index + 1]
                return part.executable_code.code

    text_parts = [part for part in content.parts if part.text]
    if not text_parts or not code_block_delimiters:
        return None

    first_text_part = copy.deepcopy(text_parts[0])
    response_text = "\n".join(part.text for part in text_parts)
    leading = "|".join(re.escape(pair[0]) for pair in code_block_delimiters)
    trailing = "|".join(re.escape(pair[1]) for pair in code_block_delimiters)
    match = re.search(
        rf"(?P<prefix>.*?)({leading})(?P<code>.*?)({trailing})(?P<suffix>.*?)$",
        response_text,
        re.DOTALL,
    )
    if match is None or not match.group("code"):
        return None

    code = match.group("code")
    content.parts = []
    if match.group("prefix"):
        first_text_part.text = match.group("prefix")
        content.parts.append(first_text_part)
    content.parts.append(build_executable_code_part(code))
    return code


def convert_code_execution_parts(
    content: Content,
    code_block_delimiter: tuple[str, str],
    execution_result_delimiters: tuple[str, str],
) -> None:
    """Turn trailing code/result parts into delimited text for the model."""
    if not content.parts:
        return
    last = content.parts[-1]
    if last.executable_code:
        content.parts[-1] = Part(
            text=code_block_delimiter[0] + last.executable_code.code + code_block_delimiter[1]
        )
    # A lone result part came from the executor, not the model.
    elif len(content.parts) == 1 and last.code_execution_result:
        content.parts[-1] = Part(
            text=execution_result_delimiters[0]
            + last.code_execution_result.output
            + execution_result_delimiters[1]
        )
        content.role = "user"


def get_normalized_file_name(file_name: str) -> str:
    """A Python variable name derived from a file name."""
    var_name, _ = os.path.splitext(file_name)
    var_name = re.sub(r"[^a-zA-Z0-9_]", "_", var_name)
    if var_name and var_name[0].isdigit():
        var_name = "_" + var_name
    return var_name


def get_data_file_preprocessing_code(file: File) -> str | None:
    """Code loading ``file`` into a DataFrame and exploring it."""
    if file.mime_type not in DATA_FILE_UTIL_MAP:
        return None
    var_name = get_normalized_file_name(file.name)
    loader_code = DATA_FILE_UTIL_MAP[file.mime_type][1].format(filename=file.name)
    return f"""
{DATA_FILE_HELPER_LIB}

# Load the dataframe.
{var_name} = {loader_code}

# Use `explore_df` to guide my analysis.
explore_df({var_name})
"""
