# image_geolocate.py
# Command-Line Interface for the Image Geolocation Engine

import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from ai_analysis import analyze_image_url
from errors import GeolocationError
from geolocation_engine import load_image_file, process_image_geolocation
from location_parser import extract_locations


def print_url_analysis(url):
    """Raw answer and parsed candidates for a remote image (no geocoding)."""
    analysis = analyze_image_url(url)
    print(f"AI Output:            {analysis.raw_text.strip()}")
    locations = extract_locations(analysis.raw_text)
    if locations:
        for index, location in enumerate(locations, start=1):
            print(f"Candidate {index}:          {location}")
    else:
        print("No usable location could be extracted from the AI answer.")


def print_geolocation(image_path, all_candidates):
    results, _ = process_image_geolocation(load_image_file(image_path), all_candidates=all_candidates)

    print(f"AI Output:            {results['ai_output'].strip()}")
    print(f"Primary Location:     {results.get('primary_location') or 'N/A'}")

    if results.get('success'):
        for marker in results['markers']:
            print(f"Marker:               {marker['title']} -> Lat={marker['latitude']:.6f}, "
                  f"Lon={marker['longitude']:.6f} ({marker['accuracy']})")
            if marker.get('address'):
                print(f"  Address:            {marker['address']}")
        if results.get('map_url'):
            print(f"Map Link:             {results['map_url']}")
    elif results.get('locations'):
        print("Could not place the candidate location on the map.")
    else:
        print("No usable location could be extracted from the AI answer.")


def run_geolocation_cli(argv=None):
    """Handles command-line arguments and calls the geolocation engine."""

    # Load environment variables from .env file so the engine can reach its API keys.
    load_dotenv()
    logging.basicConfig(
        level=logging.WARNING,
        format='%(asctime)s - GEOLOC_ENGINE - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(
        description="AI-Powered Image Geolocation Engine: Command-Line Tool.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument(
        "image",
        type=str,
        help="Path to the image file to be geolocated, or an http(s) URL with --url."
    )
    parser.add_argument(
        "--url",
        action="store_true",
        help="Treat IMAGE as a URL and list every location the model sees, without geocoding."
    )
    parser.add_argument(
        "--all", "-a",
        dest="all_candidates",
        action="store_true",
        help="Geocode every candidate location instead of only the primary one."
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show the engine's INFO logging."
    )
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if not args.url and not os.path.exists(args.image):
        print(f"Error: The image file was not found at the specified path: {args.image}")
        return 1

    print(f"\n--- Geolocation Process Initiated for: {os.path.basename(args.image)} ---")
    print("\n" + "=" * 35)
    print("      GEOLOCATION RESULT")
    print("=" * 35)
    try:
        if args.url:
            print_url_analysis(args.image)
        else:
            print_geolocation(args.image, args.all_candidates)
    except GeolocationError as e:
        print(f"Error: {e.message}")
        return 1
    finally:
        print("=" * 35 + "\n")
    return 0


def main():
    sys.exit(run_geolocation_cli())


if __name__ == "__main__":
    main()
