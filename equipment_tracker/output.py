import pandas as pd
import os
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MOVEMENT_COLUMNS = [
    'device_id',
    'from_location',
    'to_location',
    'status',
    'time_in',
    'time_out',
    'distance_traveled',
]

SORT_FILENAMES = {
    'default': 'equipment_movements',
    'most-to-least': 'equipment_most_to_least_used',
    'least-to-most': 'equipment_least_to_most_used',
    'unknown-locations': 'equipment_unknown_locations',
}


def _output_path(filename, default_stem, extension, output_dir):
    if filename is None:
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        filename = f'{default_stem}_{timestamp}.{extension}'

    # Bare filenames go to the output directory, explicit paths are kept
    if os.path.dirname(str(filename)):
        os.makedirs(os.path.dirname(str(filename)), exist_ok=True)
        return str(filename)
    os.makedirs(output_dir, exist_ok=True)
    return os.path.join(output_dir, filename)


def export_to_csv(data, filename=None, output_dir='output'):
    """
    Export data to CSV file.

    Args:
        data (pd.DataFrame): Data to export
        filename (str, optional): Output filename. If None, generates timestamped name.
        output_dir (str): Directory for bare filenames

    Returns:
        str: Path to the exported file
    """
    filepath = _output_path(filename, 'export', 'csv', output_dir)
    data.to_csv(filepath, index=False)
    logger.info(f"Exported {len(data)} rows to {filepath}")
    return filepath


def export_to_json(data, filename=None, output_dir='output'):
    """
    Export data to JSON file.

    Args:
        data (pd.DataFrame): Data to export
        filename (str, optional): Output filename. If None, generates timestamped name.
        output_dir (str): Directory for bare filenames

    Returns:
        str: Path to the exported file
    """
    filepath = _output_path(filename, 'export', 'json', output_dir)
    data.to_json(filepath, orient='records', date_format='iso')
    logger.info(f"Exported {len(data)} rows to {filepath}")
    return filepath


def movements_frame(movements: List[Dict[str, Any]], sort_option: str = 'default') -> pd.DataFrame:
    """
    Arrange movements for export.

    Args:
        movements: Movement records
        sort_option: One of
            - 'default': keep the given order
            - 'most-to-least': group by device, most used devices first
            - 'least-to-most': group by device, least used devices first
            - 'unknown-locations': only movements touching an unknown room

    Returns:
        pd.DataFrame: Movements with the export columns
    """
    if sort_option not in SORT_FILENAMES:
        raise ValueError(f"Unsupported sort option: {sort_option}")

    df = pd.DataFrame(movements, columns=MOVEMENT_COLUMNS + ['has_unknown_location'])
    if df.empty:
        return df[MOVEMENT_COLUMNS]

    if sort_option == 'unknown-locations':
        df = df[df['has_unknown_location'].fillna(False).astype(bool)]

    elif sort_option in ('most-to-least', 'least-to-most'):
        in_use = df['status'].fillna('').str.lower().str.contains('in use')
        usage = (in_use.groupby(df['device_id']).mean() * 100).round()
        ascending = sort_option == 'least-to-most'
        device_order = usage.sort_values(ascending=ascending, kind='stable').index
        df = pd.concat([df[df['device_id'] == device_id] for device_id in device_order])

    df = df[MOVEMENT_COLUMNS].copy()
    df['from_location'] = df['from_location'].fillna('Unknown')
    df['to_location'] = df['to_location'].fillna('Unknown')
    df['status'] = df['status'].fillna('Unknown')
    df['distance_traveled'] = df['distance_traveled'].fillna(0)
    return df


def export_movements(movements, sort_option='default', filename=None,
                     output_format='csv', output_dir='output'):
    """
    Export movement records to CSV or JSON.

    Returns:
        str: Path to the exported file
    """
    df = movements_frame(movements, sort_option)
    if filename is None:
        filename = f"{SORT_FILENAMES[sort_option]}.{output_format}"

    if output_format == 'csv':
        return export_to_csv(df, filename, output_dir)
    elif output_format == 'json':
        return export_to_json(df, filename, output_dir)
    raise ValueError(f"Unsupported output format: {output_format}")


def export_records(records, filename=None, output_format='csv', output_dir='output',
                   columns: Optional[List[str]] = None):
    """Export devices, locations or recommendations as stored."""
    df = pd.DataFrame(records)
    if columns:
        df = df.reindex(columns=columns)
    elif '_id' in df.columns:
        df = df.drop(columns=['_id'])

    if output_format == 'csv':
        return export_to_csv(df, filename, output_dir)
    elif output_format == 'json':
        return export_to_json(df, filename, output_dir)
    raise ValueError(f"Unsupported output format: {output_format}")
